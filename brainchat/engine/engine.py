# engine.py — Chat orchestrator
#
# Ties the pieces together for one turn: picks the active provider and
# model from the preference store, gates tools by provider capability,
# hands the adapter a file loader over the brain repository, and routes.
#
# The adapters do the streaming. This module does not hold conversation
# state (see messaging/conversation.py).

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Collection

from brainchat.db.repository import PreferenceStore
from brainchat.knowledge.discovery import find_relevant_files
from brainchat.messaging.conversation import LoadedFile

from . import providers
from .config import get_model_by_id, get_provider_config
from .providers.base import ERROR_MARKERS
from .types import FileLoader, SendMessageOptions, StreamCallbacks

logger = logging.getLogger(__name__)

TreeLoader = Callable[[], Awaitable[list[dict[str, Any]]]]

__all__ = ["ChatEngine", "ToolOptions", "find_relevant_files"]


@dataclass
class ToolOptions:
    enable_web_search: bool = False
    enable_web_fetch: bool = False
    enable_code_execution: bool = False


class ChatEngine:
    """Provider-agnostic entry point for sending chat turns."""

    def __init__(
        self,
        store: PreferenceStore,
        loader: FileLoader | None = None,
        tree_loader: TreeLoader | None = None,
    ):
        self.store = store
        self.loader = loader
        self.tree_loader = tree_loader

    @classmethod
    def from_repository(cls, store: PreferenceStore, repository: Any) -> ChatEngine:
        """Engine whose loaders call a GitHubRepository off the event loop."""

        async def loader(paths: list[str]) -> list[dict[str, str]]:
            return await asyncio.to_thread(repository.load_file_contents, paths)

        async def tree_loader() -> list[dict[str, Any]]:
            return await asyncio.to_thread(repository.get_file_tree)

        return cls(store, loader=loader, tree_loader=tree_loader)

    # -----------------------------------------------------------------------
    # Selection
    # -----------------------------------------------------------------------

    @property
    def active_provider(self) -> str:
        return self.store.get_active_provider()

    def resolve_model(self, provider: str, model_id: str | None = None) -> str:
        """Explicit model if it belongs to the provider, else the stored selection."""
        if model_id:
            model = get_model_by_id(model_id)
            if model is not None and model.provider == provider:
                return model_id
            logger.warning("Model %s does not belong to %s, using stored selection", model_id, provider)
        return self.store.get_selected_model(provider)

    def stored_tool_options(self) -> ToolOptions:
        return ToolOptions(
            enable_web_search=self.store.get_tool_enabled("web_search"),
            enable_web_fetch=self.store.get_tool_enabled("web_fetch"),
            enable_code_execution=self.store.get_tool_enabled("code_execution"),
        )

    def tool_options_for(self, provider: str, requested: ToolOptions | None = None) -> ToolOptions:
        """Drop tools the provider can't run natively."""
        config = get_provider_config(provider)
        requested = requested or self.stored_tool_options()
        return ToolOptions(
            enable_web_search=requested.enable_web_search and config.supports_web_search,
            enable_web_fetch=requested.enable_web_fetch,
            enable_code_execution=requested.enable_code_execution and config.supports_code_execution,
        )

    # -----------------------------------------------------------------------
    # Turns
    # -----------------------------------------------------------------------

    async def send_message(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        api_key: str,
        callbacks: StreamCallbacks,
        model_id: str | None = None,
        tool_options: ToolOptions | None = None,
        abort_signal: asyncio.Event | None = None,
        provider: str | None = None,
    ) -> None:
        provider = provider or self.active_provider
        model = self.resolve_model(provider, model_id)
        tools = self.tool_options_for(provider, tool_options)
        logger.info("Turn on %s/%s (%d messages)", provider, model, len(messages))

        options = SendMessageOptions(
            messages=messages,
            system_prompt=system_prompt,
            api_key=api_key,
            model_id=model,
            callbacks=callbacks,
            enable_web_search=tools.enable_web_search,
            enable_web_fetch=tools.enable_web_fetch,
            enable_code_execution=tools.enable_code_execution,
            abort_signal=abort_signal,
            load_file_contents=self.loader,
        )
        await providers.send_message(provider, options)

    # -----------------------------------------------------------------------
    # Brain files
    # -----------------------------------------------------------------------

    async def load_files(self, paths: list[str]) -> list[LoadedFile]:
        if not paths or self.loader is None:
            return []
        try:
            files = await self.loader(paths)
        except Exception:
            logger.exception("Failed to load file contents")
            return []
        return [LoadedFile.from_content(f["path"], f["content"]) for f in files]

    async def fetch_file_tree(self) -> list[dict[str, Any]]:
        if self.tree_loader is None:
            return []
        try:
            return await self.tree_loader()
        except Exception:
            logger.exception("Failed to fetch file tree")
            return []

    async def discover_files(
        self,
        query: str,
        tree: list[dict[str, Any]] | None = None,
        max_files: int = 5,
        exclude: Collection[str] = (),
    ) -> list[LoadedFile]:
        """Load the files a question names by source or folder.

        Paths in ``exclude`` are skipped and files that failed to load are
        dropped.
        """
        if tree is None:
            tree = await self.fetch_file_tree()
        paths = [p for p in find_relevant_files(query, tree, max_files) if p not in exclude]
        return [f for f in await self.load_files(paths) if not f.content.startswith(ERROR_MARKERS)]
