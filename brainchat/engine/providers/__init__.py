# providers — Provider router
#
# One adapter module per vendor, each exposing validate_key, get_models,
# and send_message with the same signatures. Route by provider id.

from __future__ import annotations

from types import ModuleType

from ..config import ANTHROPIC, GEMINI, OPENAI, ModelDefinition, get_provider_config
from ..types import KeyValidationResult, SendMessageOptions
from . import anthropic, gemini, openai

_ADAPTERS: dict[str, ModuleType] = {
    ANTHROPIC: anthropic,
    OPENAI: openai,
    GEMINI: gemini,
}


def get_provider(provider: str) -> ModuleType:
    get_provider_config(provider)  # raises for unknown ids
    return _ADAPTERS[provider]


async def validate_key(provider: str, key: str) -> KeyValidationResult:
    return await get_provider(provider).validate_key(key)


async def send_message(provider: str, options: SendMessageOptions) -> None:
    await get_provider(provider).send_message(options)


def get_models(provider: str) -> list[ModelDefinition]:
    return get_provider(provider).get_models()
