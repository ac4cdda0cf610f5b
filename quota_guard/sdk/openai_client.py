"""
Gateway client built on the OpenAI SDK.

The gateway speaks the OpenAI chat completions wire format, so the stock
client is pointed at it with a gateway-issued key.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

DEFAULT_BASE_URL = "http://127.0.0.1:8000/v1"


class GatewayClient:
    """OpenAI client bound to a Quota Guard gateway.

    Quota rejections surface as the SDK's own errors: 429 as
    ``openai.RateLimitError`` and 403 as ``openai.PermissionDeniedError``.
    """

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        """Initialize the client.

        Args:
            api_key: Gateway-issued key (required)
            base_url: Gateway API root, defaults to a local server

        Raises:
            ValueError: If api_key is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.base_url = base_url or DEFAULT_BASE_URL
        self.client = OpenAI(api_key=api_key, base_url=self.base_url)

    def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        **kwargs: Any
    ):
        """Create a chat completion through the gateway.

        Args:
            model: Model identifier from the gateway catalogue (required)
            messages: List of message dictionaries (required)
            **kwargs: Additional completion parameters

        Returns:
            OpenAI chat completion response

        Raises:
            ValueError: If model or messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        return self.client.chat.completions.create(
            model=model,
            messages=messages,
            **kwargs
        )
