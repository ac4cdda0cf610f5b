"""
Outbound alert notifications.
"""
