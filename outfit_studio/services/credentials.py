"""One-shot API key resolution and the local key store."""

import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, SecretStr

from ..config import StudioConfig
from ..errors import CredentialError

logger = logging.getLogger(__name__)

STORE_KEY = "GEMINI_API_KEY"
KEY_PREFIX = "AIza"


class ApiCredential(BaseModel):
    """Immutable API key handed to every downstream model call."""

    model_config = ConfigDict(frozen=True)

    api_key: SecretStr
    source: Literal["user", "store", "environment"]

    @property
    def value(self) -> str:
        return self.api_key.get_secret_value()


class CredentialStore:
    """Persists the API key in a small JSON file under a fixed key name."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable credential store %s: %s", self.path, e)
            return None
        key = data.get(STORE_KEY) if isinstance(data, dict) else None
        return key.strip() if isinstance(key, str) and key.strip() else None

    def save(self, api_key: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({STORE_KEY: api_key}), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def validate_api_key(api_key: str) -> str:
    """Check a user-entered key and return it stripped."""
    key = (api_key or "").strip()
    if not key:
        raise CredentialError("Please enter a Gemini API key.")
    if not key.startswith(KEY_PREFIX):
        raise CredentialError(f"This does not look like a Gemini API key (keys start with '{KEY_PREFIX}').")
    return key


def resolve_credential(
    config: StudioConfig,
    store: CredentialStore,
    user_key: str | None = None,
) -> ApiCredential:
    """Resolve the API key once: user input, then the local store, then the environment.

    A user-entered key is validated and saved to the store.
    """
    if user_key is not None:
        key = validate_api_key(user_key)
        store.save(key)
        logger.info("Using API key entered by the user")
        return ApiCredential(api_key=SecretStr(key), source="user")

    stored = store.load()
    if stored:
        logger.info("Using API key from %s", store.path)
        return ApiCredential(api_key=SecretStr(stored), source="store")

    env_key = config.gemini_api_key.get_secret_value().strip() if config.gemini_api_key else ""
    if len(env_key) > 10:
        logger.info("Using API key from environment")
        return ApiCredential(api_key=SecretStr(env_key), source="environment")

    raise CredentialError("No Gemini API key configured. Enter a key to continue.")
