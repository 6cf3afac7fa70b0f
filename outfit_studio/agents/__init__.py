"""LLM agents for the outfit editing pipeline."""

from .match_verifier import MatchVerifier
from .prompt_synthesizer import PromptSynthesisService

__all__ = [
    "MatchVerifier",
    "PromptSynthesisService",
]
