# Test fixtures and configuration
import inspect
import io
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image
from pydantic import SecretStr

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from outfit_studio.config import ModelConfig, StudioConfig  # noqa: E402
from outfit_studio.services import ApiCredential, BackoffExecutor  # noqa: E402


def text_response(text: str) -> types.GenerateContentResponse:
    """Response whose first candidate holds a single text part."""
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(content=types.Content(role="model", parts=[types.Part(text=text)]))
        ]
    )


def json_response(payload: dict) -> types.GenerateContentResponse:
    return text_response(json.dumps(payload))


def image_response(data: bytes, mime_type: str = "image/png") -> types.GenerateContentResponse:
    """Response carrying one inline image part after a short text part."""
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[
                        types.Part(text="Here is the edited image."),
                        types.Part(inline_data=types.Blob(data=data, mime_type=mime_type)),
                    ],
                )
            )
        ]
    )


def api_error(code: int, status: str, message: str = "error") -> genai_errors.APIError:
    return genai_errors.APIError(code, {"error": {"code": code, "status": status, "message": message}})


def route_call(model: str, contents: list) -> str:
    """Name the flow a generate_content call belongs to."""
    if model == ModelConfig().image_edit:
        return "edit"
    text = contents[-1]
    if "outfit keywords" in text:
        return "reference"
    if "background removal" in text:
        return "extract"
    if "Does the character's outfit" in text:
        return "verify"
    return "outfit"


class FakeGeminiClient:
    """Stands in for ``genai.Client``; replies are queued per flow and calls recorded.

    A queued reply may be a response, an exception to raise, or a (possibly
    async) zero-argument callable producing either.
    """

    def __init__(self):
        self.calls: list[SimpleNamespace] = []
        self.api_keys: list[str] = []
        self._replies: dict[str, list] = {}
        self.aio = SimpleNamespace(models=SimpleNamespace(generate_content=self._generate_content))

    def queue(self, route: str, *replies) -> "FakeGeminiClient":
        self._replies.setdefault(route, []).extend(replies)
        return self

    def calls_to(self, route: str) -> list[SimpleNamespace]:
        return [call for call in self.calls if call.route == route]

    def factory(self, api_key: str) -> "FakeGeminiClient":
        self.api_keys.append(api_key)
        return self

    async def _generate_content(self, *, model, contents, config=None):
        route = route_call(model, contents)
        self.calls.append(SimpleNamespace(route=route, model=model, contents=contents, config=config))

        replies = self._replies.get(route)
        if not replies:
            raise AssertionError(f"Unexpected {route} call to {model}")
        reply = replies.pop(0)
        if callable(reply):
            reply = reply()
            if inspect.isawaitable(reply):
                reply = await reply
        if isinstance(reply, BaseException):
            raise reply
        return reply


class SleepRecorder:
    """Instant replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_gemini():
    return FakeGeminiClient()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def executor(sleep_recorder):
    """Backoff executor with the default policy and no real waiting."""
    return BackoffExecutor(max_attempts=3, base_delay=1.0, sleep=sleep_recorder)


@pytest.fixture
def studio_config(tmp_path):
    return StudioConfig(credentials_path=tmp_path / "credentials.json", gemini_api_key=None)


@pytest.fixture
def credential():
    return ApiCredential(api_key=SecretStr("AIzaSyTestKey0123456789"), source="user")


@pytest.fixture
def make_png():
    """Factory for real PNG bytes of a given size."""
    def _make(width: int, height: int, color=(180, 120, 200)) -> bytes:
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buffer, format="PNG")
        return buffer.getvalue()
    return _make


@pytest.fixture
def minimal_png_bytes(make_png):
    """Minimal valid PNG image bytes."""
    return make_png(1, 1)


@pytest.fixture
def temp_image_file(tmp_path, make_png):
    """Create a temporary 1080x1080 PNG file."""
    img_path = tmp_path / "character.png"
    img_path.write_bytes(make_png(1080, 1080))
    return img_path


@pytest.fixture
def outfit_analysis_payload():
    """A well-formed outfit-change analysis reply for a full-body image."""
    return {
        "yaml_analysis": (
            'VISIBLE_ZONES: ["HEAD", "NECK", "SHOULDERS", "CHEST", "ARMS", "WAIST", "HIPS", "LEGS", "FEET"]\n'
            "HAIR_MASTER:\n  LOCK_INSTRUCTION: Keep the silver twin-tails hair exactly as is.\n"
            "FACE_MASTER:\n  LOCK_INSTRUCTION: Do not change the face, eyes, or expression.\n"
        ),
        "generation_prompt": (
            "/* --- OUTFIT (New!) --- */\n"
            "white T-shirt and jeans\n\n"
            "*** PROTECTION MANDATES (STRICTLY ENFORCE) ***\n"
            "- BACKGROUND: Keep the city street background exactly unchanged.\n"
            "- IDENTITY: Do not change the face. Keep the silver twin-tails hair exactly as is.\n"
            "- POSE: Maintain the exact pose: standing, arms relaxed.\n"
            "- PHOTOGRAPHY: Keep the original camera angle, framing, lighting, and composition."
        ),
    }
