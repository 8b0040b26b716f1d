"""
Provider Adapter
================
Asynchronous fan-out of one diagnosis prompt to every configured AI
provider.

Contract:
    - call_all_providers() queries every provider that has an API key
      concurrently and returns one ProviderResponse per queried provider,
      in provider order. Unconfigured providers are skipped.
    - It NEVER raises and never blocks past the slowest provider's
      timeout: HTTP errors, timeouts, transport failures and
      unparseable answers all become responses with `error` set.
    - Fusion downstream must cope with any number of failed responses.

Expected provider answer (JSON, optionally inside a markdown fence):
    {"hypothesis": "...", "patch": "<unified diff>", "tests": [...],
     "confidence": 0.85, "explain": "..."}
"""
import asyncio
import json
import logging
import re
from typing import List, Optional

import httpx

from incident_agent.core.config import DIAGNOSIS_TEMPERATURE
from incident_agent.llm.prompts import DIAGNOSIS_SYSTEM_PROMPT
from incident_agent.llm.providers import ProviderConfig, default_providers
from incident_agent.models.diagnosis import ProviderResponse

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


# ---------------------------------------------------------------------------
# Response Parsing
# ---------------------------------------------------------------------------
def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3].rstrip()
    return cleaned


def parse_provider_response(raw: str, provider_name: str) -> ProviderResponse:
    """
    Parse a provider answer into a ProviderResponse.

    Tries the whole (fence-stripped) text as JSON first, then the outermost
    {...} block. Anything else is kept as content with `error` set.
    """
    if not raw or not raw.strip():
        return ProviderResponse(provider=provider_name, error="Empty response")

    cleaned = _strip_fences(raw)
    data = None
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        match = _JSON_OBJECT.search(cleaned)
        if match:
            try:
                data = json.loads(match.group(0))
            except (json.JSONDecodeError, ValueError):
                data = None

    if not isinstance(data, dict):
        logger.warning("Provider %s returned unparseable diagnosis", provider_name)
        return ProviderResponse(
            provider=provider_name,
            content=raw[:2000],
            error="Response is not a JSON object",
        )

    try:
        confidence = max(0.0, min(1.0, float(data.get("confidence", 0.0))))
    except (TypeError, ValueError):
        confidence = 0.0

    tests = data.get("tests") or []
    if not isinstance(tests, list):
        tests = [str(tests)]

    patch = data.get("patch") or ""
    return ProviderResponse(
        provider=provider_name,
        content=raw,
        hypothesis=str(data.get("hypothesis") or ""),
        patch=patch if isinstance(patch, str) else "",
        tests=[str(t) for t in tests],
        explanation=str(data.get("explain") or ""),
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------
class ProviderAdapter:
    """
    Usage:
        adapter = ProviderAdapter()
        responses = await adapter.call_all_providers(prompt, temperature=0.7)
        await adapter.close()
    """

    def __init__(
        self,
        providers: Optional[List[ProviderConfig]] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.providers = providers if providers is not None else default_providers()
        self._http = http

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def call_all_providers(
        self,
        prompt: str,
        temperature: float = DIAGNOSIS_TEMPERATURE,
    ) -> List[ProviderResponse]:
        configured = [p for p in self.providers if p.configured]
        skipped = [p.name for p in self.providers if not p.configured]
        if skipped:
            logger.debug("Skipping unconfigured providers: %s", ", ".join(skipped))

        responses = await asyncio.gather(
            *(self._call_one(provider, prompt, temperature) for provider in configured)
        )
        ok = sum(1 for r in responses if r.error is None)
        logger.info("Diagnosis fan-out: %d/%d providers answered", ok, len(responses))
        return list(responses)

    async def _call_one(self, provider: ProviderConfig, prompt: str, temperature: float) -> ProviderResponse:
        try:
            raw = await asyncio.wait_for(
                self._request(provider, prompt, temperature),
                timeout=provider.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Provider %s: timeout after %.0fs", provider.name, provider.timeout_seconds)
            return ProviderResponse(provider=provider.name, error=f"timeout after {provider.timeout_seconds:g}s")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("Provider %s: HTTP %d", provider.name, status)
            return ProviderResponse(provider=provider.name, error=f"HTTP {status}")
        except Exception as e:
            logger.warning("Provider %s: %s", provider.name, e)
            return ProviderResponse(provider=provider.name, error=f"{type(e).__name__}: {e}")

        return parse_provider_response(raw, provider.name)

    async def _request(self, provider: ProviderConfig, prompt: str, temperature: float) -> str:
        if provider.api_style == "gemini":
            return await self._call_gemini(provider, prompt, temperature)
        if provider.api_style == "anthropic":
            return await self._call_anthropic(provider, prompt, temperature)
        return await self._call_openai_compatible(provider, prompt, temperature)

    async def _call_openai_compatible(self, provider: ProviderConfig, prompt: str, temperature: float) -> str:
        """Call an OpenAI-compatible chat completions API (OpenAI, DeepSeek)."""
        http = await self._get_http()
        resp = await http.post(
            f"{provider.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {provider.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": provider.model,
                "messages": [
                    {"role": "system", "content": DIAGNOSIS_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": temperature,
                "max_tokens": 4096,
            },
        )
        resp.raise_for_status()
        choices = resp.json().get("choices") or []
        if choices:
            return choices[0].get("message", {}).get("content", "") or ""
        return ""

    async def _call_gemini(self, provider: ProviderConfig, prompt: str, temperature: float) -> str:
        """Call the Gemini REST API."""
        http = await self._get_http()
        resp = await http.post(
            f"{provider.base_url}/models/{provider.model}:generateContent",
            params={"key": provider.api_key},
            json={
                "system_instruction": {"parts": [{"text": DIAGNOSIS_SYSTEM_PROMPT}]},
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": temperature, "maxOutputTokens": 4096},
            },
        )
        resp.raise_for_status()
        candidates = resp.json().get("candidates") or []
        if candidates:
            parts = candidates[0].get("content", {}).get("parts") or []
            if parts:
                return parts[0].get("text", "") or ""
        return ""

    async def _call_anthropic(self, provider: ProviderConfig, prompt: str, temperature: float) -> str:
        """Call the Anthropic messages API."""
        http = await self._get_http()
        resp = await http.post(
            f"{provider.base_url}/messages",
            headers={
                "x-api-key": provider.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            json={
                "model": provider.model,
                "system": DIAGNOSIS_SYSTEM_PROMPT,
                "max_tokens": 4096,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        resp.raise_for_status()
        blocks = resp.json().get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
