"""Anthropic completion adapter."""

from socratic_council.adapters.anthropic.adapter import AnthropicService

__all__ = ["AnthropicService"]
