"""Best-effort text recovery from the response objects of different LLM SDKs.

Each SDK shape is recognised as one variant and resolved by its own function.
Variants are tried in priority order; a variant that yields no text falls
through to the next one, and the whole response is stringified as a last
resort. Resolution never raises.
"""
import html
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlainTextResponse:
    """SDK convenience property (OpenAI ``output_text``, Gemini ``text``)"""

    text: str


@dataclass(frozen=True)
class OutputItemsResponse:
    """OpenAI Responses API ``output`` list"""

    items: List[Any]


@dataclass(frozen=True)
class CandidatesResponse:
    """Gemini ``candidates[].content.parts[]``"""

    candidates: List[Any]


@dataclass(frozen=True)
class ChatMessageResponse:
    """Ollama chat ``message.content``"""

    content: str


def _get(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _text_of(part: Any) -> Optional[str]:
    if isinstance(part, str):
        return part
    text = _get(part, "text")
    return text if isinstance(text, str) else None


def _join(texts: List[Optional[str]]) -> str:
    return "\n".join(t for t in texts if t)


def _as_plain_text(response: Any) -> Optional[PlainTextResponse]:
    if isinstance(response, str):
        return PlainTextResponse(response)
    for name in ("output_text", "text"):
        value = _get(response, name)
        if isinstance(value, str) and value.strip():
            return PlainTextResponse(value)
    return None


def _as_output_items(response: Any) -> Optional[OutputItemsResponse]:
    output = _get(response, "output")
    if isinstance(output, (list, tuple)):
        return OutputItemsResponse(list(output))
    return None


def _as_candidates(response: Any) -> Optional[CandidatesResponse]:
    candidates = _get(response, "candidates")
    if isinstance(candidates, (list, tuple)) and candidates:
        return CandidatesResponse(list(candidates))
    return None


def _as_chat_message(response: Any) -> Optional[ChatMessageResponse]:
    content = _get(_get(response, "message"), "content")
    if isinstance(content, str):
        return ChatMessageResponse(content)
    return None


_DETECTORS: List[Callable[[Any], Any]] = [
    _as_plain_text,
    _as_output_items,
    _as_candidates,
    _as_chat_message,
]


@singledispatch
def resolve_variant(variant: Any) -> str:
    raise TypeError(f"Unknown response variant: {type(variant).__name__}")


@resolve_variant.register
def _(variant: PlainTextResponse) -> str:
    return variant.text


@resolve_variant.register
def _(variant: OutputItemsResponse) -> str:
    texts: List[Optional[str]] = []
    for item in variant.items:
        if isinstance(item, str):
            texts.append(item)
            continue
        content = _get(item, "content")
        if isinstance(content, (list, tuple)):
            texts.extend(_text_of(part) for part in content)
        else:
            texts.append(_text_of(item))
    return _join(texts)


@resolve_variant.register
def _(variant: CandidatesResponse) -> str:
    content = _get(variant.candidates[0], "content")
    parts = content if isinstance(content, (list, tuple)) else _get(content, "parts")
    if not isinstance(parts, (list, tuple)):
        return ""
    return _join([_text_of(part) for part in parts])


@resolve_variant.register
def _(variant: ChatMessageResponse) -> str:
    return variant.content


def stringify_response(response: Any) -> str:
    """Serialize an arbitrary response object as a last resort"""
    if isinstance(response, str):
        return response
    try:
        if hasattr(response, "model_dump"):
            return json.dumps(response.model_dump(mode="json"))
        return json.dumps(response, default=str)
    except Exception:
        return str(response)


def resolve_response_text(response: Any) -> str:
    """Return the textual payload of a model response, HTML-entity decoded"""
    try:
        text = ""
        for detect in _DETECTORS:
            variant = detect(response)
            if variant is None:
                continue
            text = resolve_variant(variant)
            if text.strip():
                break
        else:
            text = stringify_response(response)
    except Exception as e:
        logger.warning("Could not resolve model response text: %s", e)
        text = stringify_response(response)
    return html.unescape(text)
