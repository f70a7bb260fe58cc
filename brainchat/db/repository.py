# repository.py — Preference store
#
# Key/value persistence for API keys, model selections, the active provider,
# and tool toggles. The chat engine gets a PreferenceStore injected rather
# than reaching for global state.
#
# Organized by domain:
#   - Raw key/value access
#   - Active provider
#   - API keys and model selection
#   - Tool toggles
#   - One-time migration

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Callable

from sqlalchemy.orm import Session

from brainchat.engine.config import (
    ACTIVE_PROVIDER_KEY,
    ALL_PROVIDERS,
    ANTHROPIC,
    CODE_EXECUTION_KEY,
    LEGACY_MODEL_KEY,
    PROVIDERS,
    WEB_FETCH_KEY,
    WEB_SEARCH_KEY,
    get_default_model_for_provider,
    get_models_for_provider,
)

from .models import Preference
from .session import get_session

logger = logging.getLogger(__name__)

# Legacy model ids (and the old short names) -> current Anthropic ids
LEGACY_MODEL_MAP = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "claude-3-5-haiku-20241022": "claude-haiku-4-5-20251001",
    "claude-sonnet-4-20250514": "claude-sonnet-4-5-20250929",
}

TOOL_KEYS = {
    "web_search": WEB_SEARCH_KEY,
    "web_fetch": WEB_FETCH_KEY,
    "code_execution": CODE_EXECUTION_KEY,
}


class PreferenceStore:
    """String key/value preferences backed by the preferences table."""

    def __init__(self, session_scope: Callable[[], AbstractContextManager[Session]] = get_session):
        self._session_scope = session_scope

    # ===================================================================
    # Raw key/value access
    # ===================================================================

    def get_item(self, key: str) -> str | None:
        with self._session_scope() as s:
            row = s.get(Preference, key)
            return row.value if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._session_scope() as s:
            row = s.get(Preference, key)
            if row is None:
                s.add(Preference(key=key, value=value))
            else:
                row.value = value

    def remove_item(self, key: str) -> None:
        with self._session_scope() as s:
            row = s.get(Preference, key)
            if row is not None:
                s.delete(row)

    # ===================================================================
    # Active provider
    # ===================================================================

    def get_active_provider(self) -> str:
        """Stored provider if it has a key, else the first keyed provider, else anthropic."""
        saved = self.get_item(ACTIVE_PROVIDER_KEY)
        if saved in PROVIDERS and self.has_api_key(saved):
            return saved

        for provider in ALL_PROVIDERS:
            if self.has_api_key(provider):
                return provider
        return ANTHROPIC

    def set_active_provider(self, provider: str) -> bool:
        """Switch providers. Refused (False, nothing stored) when the provider has no key."""
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider: {provider}")
        if not self.has_api_key(provider):
            logger.info("Ignoring switch to %s: no API key stored", provider)
            return False
        self.set_item(ACTIVE_PROVIDER_KEY, provider)
        return True

    # ===================================================================
    # API keys and model selection
    # ===================================================================

    def get_api_key(self, provider: str) -> str | None:
        return self.get_item(PROVIDERS[provider].storage_key)

    def set_api_key(self, provider: str, key: str) -> None:
        self.set_item(PROVIDERS[provider].storage_key, key)

    def clear_api_key(self, provider: str) -> None:
        self.remove_item(PROVIDERS[provider].storage_key)

    def has_api_key(self, provider: str) -> bool:
        return bool(self.get_api_key(provider))

    def get_selected_model(self, provider: str) -> str:
        """Stored model if it belongs to the provider, else the provider's cheap default."""
        saved = self.get_item(PROVIDERS[provider].model_storage_key)
        if saved and any(m.id == saved for m in get_models_for_provider(provider)):
            return saved
        return get_default_model_for_provider(provider).id

    def set_selected_model(self, provider: str, model_id: str) -> None:
        self.set_item(PROVIDERS[provider].model_storage_key, model_id)

    def get_providers_with_status(self) -> list[dict[str, Any]]:
        active = self.get_active_provider()
        return [
            {
                "config": PROVIDERS[provider],
                "has_key": self.has_api_key(provider),
                "is_active": provider == active,
            }
            for provider in ALL_PROVIDERS
        ]

    # ===================================================================
    # Tool toggles
    # ===================================================================

    def get_tool_enabled(self, tool: str) -> bool:
        return self.get_item(TOOL_KEYS[tool]) == "true"

    def set_tool_enabled(self, tool: str, enabled: bool) -> None:
        self.set_item(TOOL_KEYS[tool], "true" if enabled else "false")

    # ===================================================================
    # Migration
    # ===================================================================

    def run_migration(self) -> None:
        """Carry single-provider settings into the per-provider layout.

        Runs once: a stored active provider means it already happened.
        """
        if self.get_item(ACTIVE_PROVIDER_KEY):
            return

        if self.get_api_key(ANTHROPIC):
            self.set_item(ACTIVE_PROVIDER_KEY, ANTHROPIC)

        old_model = self.get_item(LEGACY_MODEL_KEY)
        if old_model:
            new_model = LEGACY_MODEL_MAP.get(old_model, old_model)
            if "claude" in new_model:
                self.set_selected_model(ANTHROPIC, new_model)
                logger.info("Migrated model selection %s -> %s", old_model, new_model)
