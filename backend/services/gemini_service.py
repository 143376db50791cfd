"""
Gemini generateContent client with caching, circuit breaking and retries.

Features:
    - Response cache keyed by a hash of the prompt
    - Circuit breaker that fails fast after repeated errors
    - Per-attempt time limit
    - Exponential backoff retry for 429, 5xx and transport errors

Any failure surfaces as AIServiceError; callers decide on a fallback.
"""

import asyncio
import hashlib
import time
from typing import Optional

import httpx

from config import Settings
from exceptions import AIServiceError
from services.cache import AI_RESPONSES, ResponseCache, response_cache
from services.circuit_breaker import CircuitBreaker
from services.observability import log_ai_call, logger

NO_RESPONSE = "No response generated"
PARSE_ERROR = "Error parsing AI response"


class GeminiService:
    """Thin async client for the Gemini `models/{model}:generateContent` endpoint."""

    INITIAL_DELAY = 1.0
    MAX_DELAY = 8.0

    GENERATION_CONFIG = {
        "temperature": 0.7,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 2048,
    }

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        breaker: Optional[CircuitBreaker] = None,
        cache: Optional[ResponseCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        initial_delay: Optional[float] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.breaker = breaker or CircuitBreaker("gemini")
        self.cache = cache if cache is not None else response_cache
        self.initial_delay = self.INITIAL_DELAY if initial_delay is None else initial_delay
        self._client = client

        if not self.api_key:
            logger.warning("Gemini API key not configured. AI features will use fallback mode.")

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiService":
        return cls(
            api_key=settings.gemini_api_key,
            base_url=settings.gemini_base_url,
            model=settings.gemini_model,
            timeout_seconds=settings.gemini_timeout_seconds,
            max_retries=settings.gemini_max_retries,
            breaker=CircuitBreaker(
                "gemini",
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=settings.circuit_reset_seconds,
            ),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def prompt_key(prompt: str) -> str:
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()

    async def generate_content(self, prompt: str) -> str:
        """
        Send a prompt and return the first candidate's text.

        Raises:
            AIServiceError: key missing, circuit open, or the call failed
                after all retries.
        """
        if not self.is_configured:
            raise AIServiceError("AI service is not configured")

        key = self.prompt_key(prompt)
        cached = self.cache.get(AI_RESPONSES, key)
        if cached is not None:
            log_ai_call("generateContent", 0.0, cached=True)
            return cached

        start = time.perf_counter()
        text = await self.breaker.call(self._call_with_retry, prompt)
        log_ai_call("generateContent", (time.perf_counter() - start) * 1000)

        if text not in (NO_RESPONSE, PARSE_ERROR):
            self.cache.set(AI_RESPONSES, key, text)
        return text

    async def _call_with_retry(self, prompt: str) -> str:
        """
        POST with exponential backoff.

        Retries on:
        - 429 Rate Limit errors (doubled delay)
        - 5xx server errors
        - request errors (transport, decoding, redirects) and timeouts
        """
        delay = self.initial_delay
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.wait_for(self._post(prompt), timeout=self.timeout_seconds)

            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                if code != 429 and code < 500:
                    logger.error("Gemini API rejected request", status=code)
                    raise AIServiceError(f"AI service returned HTTP {code}") from e
                last_exception = e
                wait_time = delay * (2 if code == 429 else 1)

            except httpx.InvalidURL as e:
                logger.error("Gemini endpoint is not a valid URL", endpoint=self.base_url)
                raise AIServiceError("AI service is misconfigured") from e

            except (httpx.RequestError, asyncio.TimeoutError) as e:
                last_exception = e
                wait_time = delay

            if attempt < self.max_retries:
                logger.warning(
                    "Gemini call failed, retrying",
                    attempt=f"{attempt + 1}/{self.max_retries + 1}",
                    wait=f"{wait_time:.1f}s",
                    error=type(last_exception).__name__,
                )
                await asyncio.sleep(wait_time)
                delay = min(delay * 2, self.MAX_DELAY)

        raise AIServiceError("AI service is temporarily unavailable") from last_exception

    async def _post(self, prompt: str) -> str:
        body = self.build_request(prompt)
        params = {"key": self.api_key}

        if self._client is not None:
            response = await self._client.post(self.endpoint, params=params, json=body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.endpoint, params=params, json=body)

        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError:
            logger.error("Gemini returned a non-JSON body")
            return PARSE_ERROR
        return self.extract_text(payload)

    def build_request(self, prompt: str) -> dict:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(self.GENERATION_CONFIG),
        }

    @staticmethod
    def extract_text(payload: dict) -> str:
        """Return `candidates[0].content.parts[0].text`, or a placeholder when absent."""
        if not isinstance(payload, dict):
            return PARSE_ERROR

        candidates = payload.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            parts = content.get("parts")
            if isinstance(parts, list) and parts and isinstance(parts[0], dict):
                text = parts[0].get("text")
                if text is not None:
                    return str(text)

        return NO_RESPONSE

    def status(self) -> str:
        """Short status string for the health endpoint."""
        if not self.is_configured:
            return "not_configured"
        return f"circuit_{self.breaker.state}"
