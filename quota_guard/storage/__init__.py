"""
SQLite persistence for keys, projects, usage, alerts and audit entries.
"""
