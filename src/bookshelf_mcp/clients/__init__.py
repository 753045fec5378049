"""Recommendation service clients"""

from typing import Protocol

from .bedrock import BedrockRecommendationClient


class RecommendationClient(Protocol):
    """Text-completion service used to produce recommendations.

    Implementations raise RecommendationError when no text can be produced.
    """

    async def complete(self, prompt: str, max_tokens: int) -> str:
        ...


__all__ = ["BedrockRecommendationClient", "RecommendationClient"]
