"""Normalization of provider responses into a single artifact shape.

The provider returns the generated image under either of two equivalent
part shapes:

    {"inline_data": {"mime_type": "image/png", "data": "<base64>"}}
    {"inlineData": {"mimeType": "image/png", "data": "<base64>"}}

and the media type key may be spelled ``mime_type``/``mimeType`` or
``media_type``/``mediaType`` in either shape.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

DEFAULT_MEDIA_TYPE = "image/png"

_INLINE_KEYS = ("inline_data", "inlineData")
_MEDIA_TYPE_KEYS = ("mime_type", "mimeType", "media_type", "mediaType")


@dataclass(frozen=True)
class Found:
    """An artifact located in the response."""

    data: str
    media_type: str


@dataclass(frozen=True)
class NotFound:
    """No artifact in the response; reason says where the search stopped."""

    reason: str


NormalizedResponse = Union[Found, NotFound]


def _inline_payload(part: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(part, dict):
        return None
    for key in _INLINE_KEYS:
        payload = part.get(key)
        if isinstance(payload, dict):
            return payload
    return None


def _media_type(payload: Dict[str, Any]) -> str:
    for key in _MEDIA_TYPE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return DEFAULT_MEDIA_TYPE


def normalize_response(body: Any) -> NormalizedResponse:
    """
    Extract the generated artifact from a provider response body.

    Both naming conventions are treated as equivalent. A missing media type
    defaults to ``image/png``; a missing artifact is reported as NotFound,
    never defaulted.

    Args:
        body: Decoded JSON response body

    Returns:
        Found with the base64 data and media type, or NotFound
    """
    if not isinstance(body, dict):
        return NotFound("Response body is not an object")

    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return NotFound("No image candidates in response")

    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts:
        return NotFound("No image parts in response")

    for part in parts:
        payload = _inline_payload(part)
        if payload is None:
            continue
        data = payload.get("data")
        if isinstance(data, str) and data:
            return Found(data=data, media_type=_media_type(payload))

    return NotFound("No image data found in response")
