"""
Response decoding per calling convention.

Each convention has exactly one decoder. Anything that does not match a
recognized shape fails closed with MalformedResponse, which the
orchestrator treats as an ordinary attempt failure.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .errors import MalformedResponse

_MISSING = object()


@dataclass(frozen=True)
class Conversational:
    content: str


@dataclass(frozen=True)
class Completion:
    text: str


def _get(obj: Any, name: str) -> Any:
    """Read a field from a mapping or an attribute-style object."""
    if isinstance(obj, Mapping):
        return obj.get(name, _MISSING)
    return getattr(obj, name, _MISSING)


def _first(seq: Any) -> Any:
    if isinstance(seq, (str, bytes)) or not isinstance(seq, Sequence) or not seq:
        return _MISSING
    return seq[0]


def _clean(text: Any, model_id: str) -> str:
    if not isinstance(text, str):
        raise MalformedResponse("Response text is not a string", model_id)
    text = text.strip()
    if not text:
        raise MalformedResponse("Response text is empty", model_id)
    return text


def decode_chat(payload: Any, model_id: Optional[str] = None) -> Conversational:
    """Decode `choices[0].message.content`.

    Raises:
        MalformedResponse: On any other shape or empty content
    """
    if payload is None:
        raise MalformedResponse("Empty chat response", model_id)
    choice = _first(_get(payload, "choices"))
    if choice is _MISSING:
        raise MalformedResponse("Chat response has no choices", model_id)
    message = _get(choice, "message")
    if message is _MISSING or message is None:
        raise MalformedResponse("Chat choice has no message", model_id)
    content = _get(message, "content")
    if content is _MISSING:
        raise MalformedResponse("Chat message has no content", model_id)
    return Conversational(content=_clean(content, model_id))


def decode_completion(payload: Any, model_id: Optional[str] = None) -> Completion:
    """Decode a plain completion.

    Accepted shapes: a string, an object with `generated_text`, a list whose
    first element is a string or carries `generated_text`, or an
    OpenAI-style object with `choices[0].text`.

    Raises:
        MalformedResponse: On any other shape or empty text
    """
    if isinstance(payload, str):
        return Completion(text=_clean(payload, model_id))
    if payload is None:
        raise MalformedResponse("Empty completion response", model_id)

    if isinstance(payload, Sequence):
        first = _first(payload)
        if first is _MISSING:
            raise MalformedResponse("Completion list is empty", model_id)
        if isinstance(first, str):
            return Completion(text=_clean(first, model_id))
        text = _get(first, "generated_text")
        if text is _MISSING:
            raise MalformedResponse("Completion list item has no generated_text", model_id)
        return Completion(text=_clean(text, model_id))

    text = _get(payload, "generated_text")
    if text is not _MISSING:
        return Completion(text=_clean(text, model_id))

    choice = _first(_get(payload, "choices"))
    if choice is not _MISSING:
        text = _get(choice, "text")
        if text is not _MISSING:
            return Completion(text=_clean(text, model_id))

    raise MalformedResponse("Unrecognized completion response shape", model_id)
