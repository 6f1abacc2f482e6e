"""
Remote inference client.

Thin wrapper over the OpenAI SDK pointed at an OpenAI-compatible router.
Retries are disabled; the fallback chain is the retry policy.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

logger = logging.getLogger(__name__)

PLACEHOLDER_CREDENTIALS = frozenset({"your-huggingface-api-key-here"})


def is_valid_credential(api_key: Optional[str], prefix: str = "hf_", min_length: int = 11) -> bool:
    """Cheap format check so obviously bad keys never reach the network.

    Args:
        api_key: Credential to check
        prefix: Required prefix
        min_length: Minimum total length

    Returns:
        True if the key looks usable
    """
    if not api_key or api_key in PLACEHOLDER_CREDENTIALS:
        return False
    return api_key.startswith(prefix) and len(api_key) >= min_length


class InferenceClient:
    """Chat and completion calls against one provider endpoint."""

    def __init__(self, api_key: str, base_url: str, timeout_seconds: float = 30.0):
        """Initialize the client.

        Args:
            api_key: Provider credential (required)
            base_url: OpenAI-compatible endpoint
            timeout_seconds: Per-call timeout

        Raises:
            ValueError: If api_key is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.base_url = base_url
        self.client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )

    def chat(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> Any:
        """Create a chat completion.

        Returns:
            The raw SDK response; decoding is the caller's job

        Raises:
            ValueError: If messages is empty
            openai errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        logger.debug("Chat request to %s", model)
        return self.client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
        )

    def complete(
        self,
        model: str,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> Any:
        """Create a plain text completion.

        Raises:
            ValueError: If prompt is empty
            openai errors: Propagated without modification
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")

        logger.debug("Completion request to %s", model)
        return self.client.completions.create(
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
        )
