"""Anthropic client for natural-language run summaries."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Optional

import anthropic

from matrixqa.ai.prompts.summary import SUMMARY_SYSTEM_PROMPT, build_summary_prompt

logger = logging.getLogger(__name__)

API_KEY_ENV = "ANTHROPIC_API_KEY"


class AIClient:
    """Thin wrapper over ``anthropic.Anthropic`` that turns run totals into prose."""

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-latest",
        max_tokens: int = 1024,
        timeout: float = 120.0,
    ):
        api_key = os.environ.get(API_KEY_ENV)
        if not api_key:
            raise EnvironmentError(f"{API_KEY_ENV} is not set; AI run summaries are unavailable")
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens
        self.calls = 0

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0.2,
    ) -> str:
        limit = max_tokens or self.max_tokens
        self.calls += 1
        started = time.time()
        logger.debug("Summary request #%d to %s (%d chars, max_tokens=%d)",
                     self.calls, self.model, len(user_message), limit)
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=limit,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            )
        except anthropic.APIError as e:
            logger.error("Anthropic API call failed: %s", e)
            raise

        text = "".join(getattr(block, "text", "") for block in response.content)
        if response.stop_reason == "max_tokens":
            logger.warning("Summary cut off at %d tokens", limit)
        logger.info("AI summary received in %.1fs", time.time() - started)
        return text

    def summarize_run(self, results: dict[str, Any], max_tokens: int = 500) -> str:
        """Summarize a run given its totals and failing entries."""
        prompt = build_summary_prompt(json.dumps(results, indent=2))
        return self.complete(SUMMARY_SYSTEM_PROMPT, prompt, max_tokens=max_tokens).strip()
