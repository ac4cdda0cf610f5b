"""
SDK for Quota Guard.

Provides programmatic access to the gateway.
"""

from .openai_client import GatewayClient

__all__ = ["GatewayClient"]
