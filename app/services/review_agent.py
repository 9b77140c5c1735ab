"""
Review Agent

AI-backed diff review. The agent turns a diff, the requirement text and the
detected language into feedback text; the LLM call itself goes through a
TextGenerator so providers can be swapped.
"""

import httpx
import logging
from typing import Optional

from app.config import get_settings
from app.errors import ConfigurationMissing, ReviewAgentFailure
from app.services.http import HttpClientFactory, get_http_factory

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a mentor reviewing a student's pull request. Review the actual diff, "
    "check it against the stated requirements, and give specific, actionable feedback "
    "that references files and lines from the diff."
)


class OpenAITextGenerator:
    """TextGenerator over an OpenAI-compatible chat completions endpoint."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, http: Optional[HttpClientFactory] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.REVIEW_MODEL
        self.base_url = settings.OPENAI_BASE_URL
        self.http = http or get_http_factory()

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise ConfigurationMissing("OPENAI_API_KEY is not configured")

        async with self.http.client(self.base_url, {"Authorization": f"Bearer {self.api_key}"}) as client:
            response = await client.post("/chat/completions", json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            })

        response.raise_for_status()
        choices = response.json().get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""


class LLMReviewAgent:
    """Review agent that delegates generation to a TextGenerator."""

    def __init__(self, generator, max_diff_chars: Optional[int] = None):
        """
        Initialize agent.

        Args:
            generator: Object with async generate(system_prompt, user_prompt) -> str
            max_diff_chars: Diff size cap sent to the model
        """
        self.generator = generator
        self.max_diff_chars = max_diff_chars or get_settings().REVIEW_MAX_DIFF_CHARS

    def _build_prompt(self, diff: str, requirement_text: Optional[str], language: Optional[str]) -> str:
        if len(diff) > self.max_diff_chars:
            diff = diff[:self.max_diff_chars] + f"\n... (truncated - showing first {self.max_diff_chars} characters)"

        sections = [
            "=== REQUIREMENTS ===",
            requirement_text or "(no requirement text found for this branch)",
            "",
            "=== PROGRAMMING LANGUAGE ===",
            language or "unknown",
            "",
            "=== CODE CHANGES ===",
            diff,
        ]
        return "\n".join(sections)

    async def review(self, diff: str, requirement_text: Optional[str], language: Optional[str]) -> str:
        """
        Produce review feedback.

        Raises:
            ReviewAgentFailure: On an empty diff, a generator error or empty feedback
        """
        if not diff or not diff.strip():
            raise ReviewAgentFailure("No code changes found to review")

        prompt = self._build_prompt(diff, requirement_text, language)

        try:
            feedback = await self.generator.generate(SYSTEM_PROMPT, prompt)
        except ConfigurationMissing:
            raise
        except (httpx.HTTPError, ValueError) as e:
            raise ReviewAgentFailure(f"Review generation failed: {e}") from e

        if not feedback or not feedback.strip():
            raise ReviewAgentFailure("Review agent returned empty feedback")

        logger.info(f"Review generated ({len(feedback)} chars, language={language})")
        return feedback.strip()
