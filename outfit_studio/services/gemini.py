"""Shared helpers for talking to the Gemini API."""

import json
from typing import Any, Callable

from google import genai

from ..errors import CredentialError
from ..models import GeneratedImage

ClientFactory = Callable[[str], genai.Client]


def create_client(api_key: str) -> genai.Client:
    """Build a client for one call; the key is always passed in explicitly."""
    if not api_key:
        raise CredentialError("An API key is required for Gemini calls.")
    return genai.Client(api_key=api_key)


def response_text(response: Any) -> str:
    """Concatenate the text parts of the first candidate."""
    text = ""
    for candidate in (getattr(response, "candidates", None) or [])[:1]:
        content = getattr(candidate, "content", None)
        for part in (getattr(content, "parts", None) or []):
            if getattr(part, "text", None):
                text += part.text
    return text


def strip_code_fence(text: str) -> str:
    """Remove markdown code blocks around JSON output if present."""
    text = (text or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        # Remove first and last lines (```json and ```)
        text = "\n".join(lines[1:-1])
    return text


def parse_json_response(text: str) -> dict:
    """Parse a JSON object from model output; returns {} when unparseable."""
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def first_inline_image(response: Any) -> GeneratedImage | None:
    """Return the first inline image payload of the response, if any."""
    for candidate in (getattr(response, "candidates", None) or []):
        content = getattr(candidate, "content", None)
        for part in (getattr(content, "parts", None) or []):
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return GeneratedImage(data=inline.data, mime_type=inline.mime_type or "image/png")
    return None
