# types.py — Shared adapter contract
#
# Every provider adapter takes a SendMessageOptions and reports back only
# through StreamCallbacks. Nothing is returned and nothing is raised.

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .config import MAX_TOOL_ROUNDS

FileLoader = Callable[[list[str]], Awaitable[list[dict[str, str]]]]


@dataclass
class UsageData:
    input_tokens: int
    output_tokens: int
    web_searches: int
    cost: float


@dataclass
class KeyValidationResult:
    valid: bool
    error: str | None = None


@dataclass
class StreamCallbacks:
    """Optional hooks fired while a turn streams.

    Tool hooks for web search, web fetch and code execution only fire on
    providers that run those tools natively.
    """

    on_start: Callable[[], Any] | None = None
    on_token: Callable[[str], Any] | None = None
    on_complete: Callable[[str], Any] | None = None
    on_error: Callable[[str], Any] | None = None
    on_usage: Callable[[UsageData], Any] | None = None
    on_web_search: Callable[[str], Any] | None = None
    on_web_search_results: Callable[[int], Any] | None = None
    on_web_fetch: Callable[[str], Any] | None = None
    on_web_fetch_complete: Callable[[], Any] | None = None
    on_code_execution: Callable[[str], Any] | None = None
    on_code_execution_complete: Callable[[], Any] | None = None
    on_tool_error: Callable[[str, str], Any] | None = None
    on_file_load: Callable[[str], Any] | None = None
    on_file_loaded: Callable[[str, bool], Any] | None = None

    def emit(self, name: str, *args: Any) -> None:
        callback = getattr(self, name)
        if callback is not None:
            callback(*args)


@dataclass
class SendMessageOptions:
    messages: list[dict[str, str]]
    system_prompt: str
    api_key: str
    model_id: str
    callbacks: StreamCallbacks = field(default_factory=StreamCallbacks)
    enable_web_search: bool = False
    enable_web_fetch: bool = False
    enable_code_execution: bool = False
    abort_signal: asyncio.Event | None = None
    load_file_contents: FileLoader | None = None
    max_tool_rounds: int = MAX_TOOL_ROUNDS


@dataclass
class PendingToolCall:
    """A tool call being assembled from stream deltas within one round."""

    id: str
    name: str
    arguments: str = ""
    index: int = 0
