"""
Model capability classification.

Decides whether a model must be called with a chat message list or a flat
completion prompt. Closed and offline: no provider lookups.
"""

import re
from enum import Enum


class CallingConvention(Enum):
    """How a strategy is dispatched."""
    CHAT = "chat"
    COMPLETION = "completion"
    LOCAL = "local"


KNOWN_CONVERSATIONAL_MODELS = frozenset({
    "Qwen/Qwen2.5-7B-Instruct",
    "Qwen/Qwen2.5-14B-Instruct",
    "Qwen/Qwen2.5-32B-Instruct",
    "Qwen/Qwen2.5-72B-Instruct",
    "Qwen/Qwen2.5-Coder-32B-Instruct",
    "Qwen/Qwen2-7B-Instruct",
    "Qwen/Qwen1.5-7B-Chat",
    "Qwen/Qwen1.5-14B-Chat",
    "meta-llama/Llama-2-7b-chat-hf",
    "meta-llama/Llama-2-13b-chat-hf",
    "meta-llama/Llama-2-70b-chat-hf",
    "meta-llama/Meta-Llama-3-8B-Instruct",
    "meta-llama/Meta-Llama-3-70B-Instruct",
    "mistralai/Mistral-7B-Instruct-v0.1",
    "mistralai/Mistral-7B-Instruct-v0.2",
    "mistralai/Mixtral-8x7B-Instruct-v0.1",
    "microsoft/DialoGPT-medium",
    "microsoft/DialoGPT-large",
    "facebook/blenderbot-400M-distill",
    "facebook/blenderbot-1B-distill",
})

CONVERSATIONAL_PATTERNS = (
    re.compile(r"chat", re.IGNORECASE),
    re.compile(r"instruct", re.IGNORECASE),
    re.compile(r"dialog", re.IGNORECASE),
    re.compile(r"conversation", re.IGNORECASE),
)


def is_conversational(model_id: str) -> bool:
    """True for known chat models or names carrying a chat-style token."""
    if not model_id:
        return False
    if model_id in KNOWN_CONVERSATIONAL_MODELS:
        return True
    return any(pattern.search(model_id) for pattern in CONVERSATIONAL_PATTERNS)


def calling_convention_for(model_id: str) -> CallingConvention:
    if is_conversational(model_id):
        return CallingConvention.CHAT
    return CallingConvention.COMPLETION
