"""
Provider Configuration
======================
The AI backends consulted for every incident. All configured providers are
queried concurrently; there is no primary/fallback ordering, because
fusion needs independent opinions rather than the first answer.

A provider without an API key is skipped by the adapter; fusion coverage
is computed over the providers actually queried.
"""
from dataclasses import dataclass
from typing import List

from incident_agent.core.config import (
    ANTHROPIC_API_KEY,
    DEEPSEEK_API_KEY,
    GEMINI_API_KEY,
    OPENAI_API_KEY,
    PROVIDER_TIMEOUT_SECONDS,
)


@dataclass
class ProviderConfig:
    """Configuration for a single AI provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    api_style: str = "openai"  # "openai", "gemini" or "anthropic"
    timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS
    weight: float = 1.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


def default_providers() -> List[ProviderConfig]:
    return [
        ProviderConfig(
            name="openai",
            api_key=OPENAI_API_KEY or "",
            base_url="https://api.openai.com/v1",
            model="gpt-4o-mini",
        ),
        ProviderConfig(
            name="gemini",
            api_key=GEMINI_API_KEY or "",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            model="gemini-2.0-flash",
            api_style="gemini",
        ),
        ProviderConfig(
            name="deepseek",
            api_key=DEEPSEEK_API_KEY or "",
            base_url="https://api.deepseek.com/v1",
            model="deepseek-chat",
        ),
        ProviderConfig(
            name="anthropic",
            api_key=ANTHROPIC_API_KEY or "",
            base_url="https://api.anthropic.com/v1",
            model="claude-3-5-sonnet-latest",
            api_style="anthropic",
        ),
    ]
