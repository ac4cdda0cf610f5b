"""
Audit trail: action kinds, request metadata and geolocation.
"""
