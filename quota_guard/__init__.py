"""
Quota Guard: quota and spend enforcement for an LLM gateway.
"""

__version__ = "0.1.0"
