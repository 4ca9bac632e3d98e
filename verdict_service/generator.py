# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Answer Generation

Produces an agent's answer from a question and the knowledge base text using
an OpenAI-compatible chat completions endpoint (OpenRouter by default).
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Protocol

import httpx

from .errors import AnswerGenerationFailed, ConfigurationMissing
from .logging_utils import get_logger, truncate

logger = get_logger(__name__)

DEFAULT_GENERATOR_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "mistralai/mistral-7b-instruct"
MAX_CONTENT_CHARS = 4000
MAX_TOKENS_ANSWER = 250
TEMPERATURE_ANSWER = 0.5

SYSTEM_PROMPT = (
    "You are an AI assistant answering questions strictly from the provided text excerpt. "
    "Answer concisely. If the information is not present in the excerpt, say so."
)


class AnswerGenerator(Protocol):
    async def generate_answer(self, question: str, content: str, request_context: str | None = None) -> str: ...


def truncate_content(text: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class RateLimiter:
    """Sliding-window limiter shared by every request from one generator."""

    def __init__(self, max_requests: int = 10, window: float = 60.0):
        self.max_requests = max_requests
        self.window = window
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._stamps and now - self._stamps[0] >= self.window:
                    self._stamps.popleft()
                if len(self._stamps) < self.max_requests:
                    self._stamps.append(now)
                    return
                wait = self.window - (now - self._stamps[0])
                logger.warning("generator.rate_limited", in_window=len(self._stamps), wait_s=round(wait, 2))
                await asyncio.sleep(wait)


class OpenRouterGenerator:
    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        url: str = DEFAULT_GENERATOR_URL,
        timeout: float = 90.0,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationMissing("Generator API key is required", missing=["generator_api_key"])
        self.model = model
        self.url = url
        self.rate_limiter = rate_limiter or RateLimiter()
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        )

    def build_payload(self, question: str, content: str) -> dict[str, Any]:
        user_prompt = f'TEXT EXCERPT:\n---\n{truncate_content(content)}\n---\n\nQUESTION: "{question}"\n\nANSWER:'
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": MAX_TOKENS_ANSWER,
            "temperature": TEMPERATURE_ANSWER,
        }

    @staticmethod
    def parse_answer(data: dict[str, Any]) -> str:
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise AnswerGenerationFailed(f"Generator returned an error: {message}")
        try:
            answer = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise AnswerGenerationFailed("Generator response has no answer content")
        if not isinstance(answer, str) or not answer.strip():
            raise AnswerGenerationFailed("Generator returned an empty answer")
        return answer.strip()

    async def generate_answer(self, question: str, content: str, request_context: str | None = None) -> str:
        await self.rate_limiter.acquire()
        logger.info("generator.request", request_context=request_context, model=self.model)
        try:
            response = await self.client.post(self.url, json=self.build_payload(question, content))
        except httpx.RequestError as e:
            raise AnswerGenerationFailed(f"Generator request failed: {e}", details={"request_context": request_context})
        if response.status_code >= 400:
            raise AnswerGenerationFailed(
                f"Generator API error: {response.status_code}",
                details={"status": response.status_code, "body": truncate(response.text, 200)},
            )
        try:
            data = response.json()
        except ValueError:
            raise AnswerGenerationFailed("Generator response is not JSON")
        answer = self.parse_answer(data)
        logger.info("generator.answer", request_context=request_context, answer=truncate(answer, 150))
        return answer

    async def close(self) -> None:
        await self.client.aclose()
