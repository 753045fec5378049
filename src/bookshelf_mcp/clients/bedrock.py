#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Bookshelf MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
AWS Bedrock client wrapper for recommendation text generation.
Uses the model-agnostic Converse API so any Bedrock text model can be bound.
"""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import boto3

from ..errors import RecommendationError

logger = logging.getLogger(__name__)

_CREDENTIAL_PATTERNS = [
    re.compile(r"(AKIA|ASIA)[A-Z0-9]{16}"),
    re.compile(r"(?i)(aws_secret_access_key|secret|token)[\"'=:\s]+[A-Za-z0-9/+=]{16,}"),
]


def sanitize_error(error: Exception) -> str:
    """Strip anything that looks like an AWS credential from an error message."""
    message = f"{type(error).__name__}: {error}"
    for pattern in _CREDENTIAL_PATTERNS:
        message = pattern.sub("[REDACTED]", message)
    return message


class BedrockRecommendationClient:
    """Completes recommendation prompts through AWS Bedrock."""

    def __init__(self, model_id: str, region: str = "us-east-1", max_workers: int = 4):
        """Initialize without blocking - the boto3 client is created on first use."""
        self.model_id = model_id
        self.region = region
        self.bedrock_runtime: Any = None
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def _ensure_initialized(self):
        """Ensure client is initialized (async lazy initialization)."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            try:
                self.bedrock_runtime = boto3.client(
                    service_name="bedrock-runtime", region_name=self.region
                )
                self._initialized = True
                logger.info(f"AWS Bedrock client initialized in region {self.region}")
            except Exception as e:
                error_msg = sanitize_error(e)
                logger.error(f"Failed to initialize AWS Bedrock client: {error_msg}")
                raise RecommendationError(f"Bedrock initialization failed: {error_msg}") from None

    def _converse_sync(self, prompt: str, max_tokens: int) -> dict:
        """Synchronous Converse call for thread pool executor."""
        return self.bedrock_runtime.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={"maxTokens": max_tokens},
        )

    async def complete(self, prompt: str, max_tokens: int) -> str:
        """
        Generate a completion for the prompt.

        Args:
            prompt: Natural-language prompt
            max_tokens: Upper bound on generated tokens

        Returns:
            Generated text

        Raises:
            RecommendationError: on any Bedrock failure or empty output
        """
        await self._ensure_initialized()

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                self._executor, self._converse_sync, prompt, max_tokens
            )
        except Exception as e:
            error_msg = sanitize_error(e)
            logger.error(f"Bedrock generation error: {error_msg}")
            raise RecommendationError(f"Generation failed: {error_msg}") from None

        try:
            blocks = response["output"]["message"]["content"]
            text = "".join(block.get("text", "") for block in blocks).strip()
        except (KeyError, TypeError) as e:
            logger.error(f"Unexpected Bedrock response shape: {e}")
            raise RecommendationError("Invalid response format from Bedrock model") from None

        if not text:
            raise RecommendationError("Bedrock returned an empty completion")
        return text

    def cleanup(self):
        """Explicit cleanup method for resources."""
        self._executor.shutdown(wait=True, cancel_futures=True)
        logger.info("Thread pool executor shut down cleanly")
