"""
Core modules for Quota Guard.

This package contains cost calculation, key quota evaluation, project
spending classification, alerting and authorization.
"""
