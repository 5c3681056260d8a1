"""
SDK for AI Tier Router.

Provides concrete model provider adapters.
"""

from .openai_client import OpenAIProvider

__all__ = ["OpenAIProvider"]
