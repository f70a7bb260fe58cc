# config.py — Provider registry, model catalog, and runtime settings
#
# Maps each provider to its key format, storage keys, and capability flags,
# and lists every model with its per-million-token pricing. Add new models here.
#
# Runtime settings come from the environment (.env is loaded on import).

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

ANTHROPIC = "anthropic"
OPENAI = "openai"
GEMINI = "gemini"

ALL_PROVIDERS = (ANTHROPIC, OPENAI, GEMINI)


@dataclass(frozen=True)
class ModelDefinition:
    id: str
    display_name: str
    provider: str
    tier: str  # cheap | better
    input_cost_per_million: float
    output_cost_per_million: float


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    key_prefix: str
    storage_key: str
    model_storage_key: str
    console_url: str
    usage_url: str
    supports_web_search: bool
    supports_code_execution: bool
    placeholder: str
    help_text: str


PROVIDERS: dict[str, ProviderConfig] = {
    ANTHROPIC: ProviderConfig(
        id=ANTHROPIC,
        name="Claude",
        key_prefix="sk-ant-",
        storage_key="brain_anthropic_api_key",
        model_storage_key="brain_anthropic_model",
        console_url="https://console.anthropic.com/settings/keys",
        usage_url="https://console.anthropic.com/usage",
        supports_web_search=True,
        supports_code_execution=True,
        placeholder="sk-ant-...",
        help_text="You need an Anthropic account with API access and available credits.",
    ),
    OPENAI: ProviderConfig(
        id=OPENAI,
        name="OpenAI",
        key_prefix="sk-",
        storage_key="brain_openai_api_key",
        model_storage_key="brain_openai_model",
        console_url="https://platform.openai.com/api-keys",
        usage_url="https://platform.openai.com/usage",
        supports_web_search=False,
        supports_code_execution=False,
        placeholder="sk-proj-...",
        help_text="You need an OpenAI account with API access and available credits.",
    ),
    GEMINI: ProviderConfig(
        id=GEMINI,
        name="Gemini",
        key_prefix="AIza",
        storage_key="brain_gemini_api_key",
        model_storage_key="brain_gemini_model",
        console_url="https://aistudio.google.com/apikey",
        usage_url="https://aistudio.google.com/apikey",
        supports_web_search=False,
        supports_code_execution=False,
        placeholder="AIza...",
        help_text="You need a Google account. Gemini API has a generous free tier.",
    ),
}

MODELS: list[ModelDefinition] = [
    # Anthropic
    ModelDefinition("claude-haiku-4-5-20251001", "Haiku 4.5", ANTHROPIC, "cheap", 1.00, 5.00),
    ModelDefinition("claude-sonnet-4-5-20250929", "Sonnet 4.5", ANTHROPIC, "better", 3.00, 15.00),
    # OpenAI
    ModelDefinition("gpt-5-nano", "GPT-5 Nano", OPENAI, "cheap", 0.05, 0.40),
    ModelDefinition("gpt-5-mini", "GPT-5 Mini", OPENAI, "better", 0.25, 2.00),
    # Gemini
    ModelDefinition("gemini-3-flash-preview", "Flash 3", GEMINI, "cheap", 0.50, 3.00),
    ModelDefinition("gemini-3-pro-preview", "Pro 3 Preview", GEMINI, "better", 2.00, 12.00),
]

# Preference store keys (provider keys/models live on ProviderConfig)
ACTIVE_PROVIDER_KEY = "brain_api_provider"
LEGACY_MODEL_KEY = "brain_chat_model"
WEB_SEARCH_KEY = "brain_chat_web_search"
WEB_FETCH_KEY = "brain_chat_web_fetch"
CODE_EXECUTION_KEY = "brain_chat_code_execution"

# Flat estimate per web search call, not vendor-billed
WEB_SEARCH_COST = 0.01
WEB_SEARCH_MAX_USES = 3
MAX_OUTPUT_TOKENS = 4096

# Tool round trips allowed per turn before the adapter gives up
MAX_TOOL_ROUNDS = int(os.getenv("BRAINCHAT_MAX_TOOL_ROUNDS", "8"))

# Repository collaborator
GITHUB_TOKEN = os.getenv("BRAINCHAT_GITHUB_TOKEN", "")
GITHUB_REPO = os.getenv("BRAINCHAT_GITHUB_REPO", "")
INBOX_PATH = os.getenv("BRAINCHAT_INBOX_PATH", "!inbox")

# Context budget (estimated tokens of loaded files)
MAX_CONTEXT_TOKENS = 150_000
WARN_CONTEXT_TOKENS = 50_000
CHARS_PER_TOKEN = 4

LOAD_FILE_TOOL = {
    "name": "load_file",
    "description": (
        "Load a file from the brain repository to read its contents. Use this when you "
        "need to read a file that is listed in the Available Files section."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": 'The file path to load (e.g., "research/newsletters/every/20251205-ai-update.md")',
            },
        },
        "required": ["path"],
    },
}


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_model_by_id(model_id: str) -> ModelDefinition | None:
    for model in MODELS:
        if model.id == model_id:
            return model
    return None


def get_models_for_provider(provider: str) -> list[ModelDefinition]:
    return [m for m in MODELS if m.provider == provider]


def get_default_model_for_provider(provider: str) -> ModelDefinition:
    """Cheap-tier model for the provider, else its first model."""
    models = get_models_for_provider(provider)
    for model in models:
        if model.tier == "cheap":
            return model
    return models[0]


def get_provider_config(provider: str) -> ProviderConfig:
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}. Available: {', '.join(ALL_PROVIDERS)}")
    return PROVIDERS[provider]


def validate_key_format(key: str, provider: str) -> bool:
    """Prefix check only. Does not contact the vendor."""
    config = get_provider_config(provider)
    # OpenAI issues both sk- and sk-proj- keys
    if provider == OPENAI:
        return key.startswith("sk-")
    return key.startswith(config.key_prefix)


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    model_id: str,
    web_searches: int = 0,
) -> float:
    """Dollar cost of a turn. Unknown models cost nothing."""
    model = get_model_by_id(model_id)
    if model is None:
        return 0

    input_cost = (input_tokens / 1_000_000) * model.input_cost_per_million
    output_cost = (output_tokens / 1_000_000) * model.output_cost_per_million
    search_cost = web_searches * WEB_SEARCH_COST
    return input_cost + output_cost + search_cost
