"""OpenAI and OpenAI-compatible completion adapter."""

from socratic_council.adapters.openai.adapter import OpenAICompatibleService

__all__ = ["OpenAICompatibleService"]
