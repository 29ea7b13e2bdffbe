"""
LLM Client

OpenAI chat-completion wrapper with retry logic, token tracking and JSON
output parsing, used by the strategy drafting service.
"""

import os
import json
import time
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass

import openai

from planning_errors import GeneratorUnavailableError, MalformedGenerationError

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Configuration for LLM client"""
    api_key: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4000
    timeout: int = 60
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.getenv("OPENAI_API_KEY")
        if not self.model:
            self.model = os.getenv("OPENAI_MODEL", "gpt-4o")


@dataclass
class LLMResponse:
    """Response from LLM"""
    text: str
    tokens_used: int
    model: str
    finish_reason: str
    latency_ms: int


@dataclass
class TokenUsage:
    """Token usage tracking"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, prompt: int, completion: int):
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += prompt + completion


def extract_json(text: str) -> Any:
    """Parse a JSON payload, tolerating a markdown code fence around it."""
    if text is None:
        raise MalformedGenerationError("LLM returned an empty response")
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedGenerationError(f"LLM response is not valid JSON: {e}")


class StrategyLLMClient:
    """
    OpenAI client for strategy drafting.

    Features:
    - Lazy client construction
    - Retry with exponential backoff
    - Token usage tracking
    - JSON-mode completions
    """

    SYSTEM_PROMPT = """You are a strategic planning expert helping organizations develop effective strategies.
You analyze organizational context, market conditions, and strategic priorities to generate
actionable, evidence-based strategies. Your recommendations are practical, measurable,
and aligned with organizational capabilities. Always respond with valid JSON."""

    def __init__(self, config: Optional[LLMConfig] = None, client=None):
        self.config = config or LLMConfig()
        self.usage = TokenUsage()
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or bool(self.config.api_key)

    def _ensure_client(self):
        if self._client is not None:
            return self._client
        if not self.config.api_key:
            raise GeneratorUnavailableError("No OpenAI API key configured (set OPENAI_API_KEY)")
        self._client = openai.OpenAI(api_key=self.config.api_key, timeout=self.config.timeout)
        return self._client

    def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """
        Get a completion from the LLM.

        Retries with exponential backoff; the last failure is re-raised as
        GeneratorUnavailableError. When `timeout` is given, every attempt and
        backoff sleep fits inside that total budget.
        """
        client = self._ensure_client()

        messages = [
            {"role": "system", "content": system_prompt or self.SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        params = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None

        for attempt in range(self.config.max_retries):
            request_timeout = self.config.timeout
            if deadline is not None:
                request_timeout = min(request_timeout, deadline - time.monotonic())
                if request_timeout <= 0:
                    raise GeneratorUnavailableError(f"Strategy generator did not answer within {timeout}s")
            try:
                response = client.chat.completions.create(timeout=request_timeout, **params)
                break
            except openai.OpenAIError as e:
                delay = self.config.retry_delay * (2 ** attempt)
                out_of_budget = deadline is not None and time.monotonic() + delay >= deadline
                if attempt < self.config.max_retries - 1 and not out_of_budget:
                    logger.warning(f"LLM call failed (attempt {attempt + 1}), retrying in {delay}s: {e}")
                    time.sleep(delay)
                else:
                    logger.error(f"LLM call failed after {attempt + 1} attempts: {e}")
                    raise GeneratorUnavailableError(f"Strategy generator unavailable: {e}")

        latency_ms = int((time.monotonic() - start) * 1000)

        usage = response.usage
        if usage is not None:
            self.usage.add(usage.prompt_tokens, usage.completion_tokens)

        return LLMResponse(
            text=response.choices[0].message.content,
            tokens_used=usage.total_tokens if usage is not None else 0,
            model=response.model,
            finish_reason=response.choices[0].finish_reason,
            latency_ms=latency_ms,
        )

    def complete_json(self, prompt: str, **kwargs) -> Dict[str, Any]:
        response = self.complete(prompt, json_mode=True, **kwargs)
        return extract_json(response.text)

    def get_usage_stats(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.usage.prompt_tokens,
            "completion_tokens": self.usage.completion_tokens,
            "total_tokens": self.usage.total_tokens,
        }
