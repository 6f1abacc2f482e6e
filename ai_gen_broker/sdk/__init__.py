"""
SDK for the generation broker.

Provides the remote inference client used by the fallback orchestrator.
"""

from .inference_client import InferenceClient, is_valid_credential

__all__ = ["InferenceClient", "is_valid_credential"]
