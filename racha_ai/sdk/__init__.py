"""
SDK for Racha AI.

Provides the model providers the router can call.
"""

from .openai_client import OpenAIModelProvider

__all__ = ["OpenAIModelProvider"]
