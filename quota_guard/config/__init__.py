"""
Gateway configuration and logging setup.
"""
