import logging
import re

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from beacon.config import (
    ANTHROPIC_API_KEY,
    DUMMY_MODE,
    LLM_DEFAULT_TIER,
    LLM_MODEL_FAST,
    LLM_MODEL_HIGH,
    LLM_MODEL_STANDARD,
    LLM_PROVIDER,
    LLM_TIMEOUT_SECONDS,
    LLM_TOOLKIT_URL,
    OPENAI_API_KEY,
)
from beacon.exceptions import OracleTransportError

logger = logging.getLogger(__name__)


_ANTHROPIC_DEFAULTS = {
    "fast": "claude-3-5-haiku-latest",
    "standard": "claude-sonnet-4-5",
    "high": "claude-sonnet-4-5",
}

_OPENAI_DEFAULTS = {
    "fast": "gpt-4o-mini",
    "standard": "gpt-4o",
    "high": "gpt-4o",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def strip_code_fence(text: str) -> str:
    """Unwrap a fenced code block and trim any chatter around the JSON value."""
    text = text.strip()
    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()
    if text[:1] in ("{", "["):
        return text
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start:end + 1]
    return text


class LLMClient:
    def __init__(
        self,
        provider: str | None = None,
        *,
        anthropic_api_key: str = ANTHROPIC_API_KEY,
        openai_api_key: str = OPENAI_API_KEY,
        toolkit_url: str = LLM_TOOLKIT_URL,
    ) -> None:
        provider = (provider or LLM_PROVIDER or "auto").lower()
        if DUMMY_MODE and provider == "auto":
            provider = "dummy"
        if provider == "auto":
            if anthropic_api_key:
                provider = "anthropic"
            elif openai_api_key:
                provider = "openai"
            elif toolkit_url:
                provider = "toolkit"
            else:
                provider = "dummy"
        self.provider = provider
        self.toolkit_url = toolkit_url

        self._anthropic = AsyncAnthropic(api_key=anthropic_api_key) if anthropic_api_key else None
        self._openai = AsyncOpenAI(api_key=openai_api_key) if openai_api_key else None

    def available(self) -> bool:
        if self.provider == "anthropic":
            return self._anthropic is not None
        if self.provider == "openai":
            return self._openai is not None
        if self.provider == "toolkit":
            return bool(self.toolkit_url)
        return False

    def model_for_tier(self, tier: str | None) -> str:
        tier = (tier or LLM_DEFAULT_TIER or "fast").lower()
        if tier not in ("fast", "standard", "high"):
            tier = "standard"

        if tier == "fast" and LLM_MODEL_FAST:
            return LLM_MODEL_FAST
        if tier == "standard" and LLM_MODEL_STANDARD:
            return LLM_MODEL_STANDARD
        if tier == "high" and LLM_MODEL_HIGH:
            return LLM_MODEL_HIGH

        if self.provider == "anthropic":
            return _ANTHROPIC_DEFAULTS[tier]
        return _OPENAI_DEFAULTS[tier]

    async def complete_text(
        self,
        *,
        system: str,
        user: str,
        max_tokens: int = 2048,
        tier: str | None = None,
    ) -> str:
        """Return the raw completion text. Transport problems raise OracleTransportError."""
        if not self.available():
            raise OracleTransportError("LLM provider unavailable")

        try:
            if self.provider == "anthropic":
                return await self._complete_anthropic(system, user, max_tokens, tier)
            if self.provider == "openai":
                return await self._complete_openai(system, user, max_tokens, tier)
            return await self._complete_toolkit(system, user)
        except OracleTransportError:
            raise
        except Exception as e:
            logger.error("LLM request via %s failed: %s", self.provider, e)
            raise OracleTransportError(f"LLM request failed: {e}") from e

    async def _complete_anthropic(self, system: str, user: str, max_tokens: int, tier: str | None) -> str:
        message = await self._anthropic.messages.create(
            model=self.model_for_tier(tier),
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        raw = ""
        for block in message.content:
            if hasattr(block, "text"):
                raw += block.text
        return raw

    async def _complete_openai(self, system: str, user: str, max_tokens: int, tier: str | None) -> str:
        response = await self._openai.chat.completions.create(
            model=self.model_for_tier(tier),
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or ""

    async def _complete_toolkit(self, system: str, user: str) -> str:
        """Plain completion endpoint: POST {messages} -> {completion}."""
        async with httpx.AsyncClient(timeout=LLM_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                self.toolkit_url,
                headers={"Content-Type": "application/json"},
                json={
                    "messages": [
                        {"role": "system", "content": system},
                        {"role": "user", "content": [{"type": "text", "text": user}]},
                    ]
                },
            )
            resp.raise_for_status()
        data = resp.json()
        completion = data.get("completion") if isinstance(data, dict) else None
        if not isinstance(completion, str):
            raise OracleTransportError("Completion endpoint returned no text")
        return completion


_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
