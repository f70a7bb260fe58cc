# conversation.py — One chat session: messages plus loaded files
#
# Holds the running message list and the set of brain files pinned into the
# system prompt. Files are keyed by path; loading a path twice replaces it.
#
# Context budget is measured over loaded files only, using the rough
# chars-per-token estimate. Messages don't count toward it.

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from brainchat.engine.config import CHARS_PER_TOKEN, MAX_CONTEXT_TOKENS, WARN_CONTEXT_TOKENS


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_token_count(tokens: int) -> str:
    if tokens < 1000:
        return f"{tokens}"
    if tokens < 10000:
        return f"{tokens / 1000:.1f}k"
    # Half rounds up, not to even
    return f"{int(tokens / 1000 + 0.5)}k"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str  # user | assistant
    content: str
    timestamp: datetime


@dataclass
class LoadedFile:
    path: str
    content: str
    token_estimate: int = 0

    @classmethod
    def from_content(cls, path: str, content: str) -> LoadedFile:
        return cls(path=path, content=content, token_estimate=estimate_tokens(content))


@dataclass
class ContextStatus:
    total_tokens: int
    is_over_limit: bool
    is_warning: bool
    message: str


def context_status(files: list[LoadedFile]) -> ContextStatus:
    total = sum(f.token_estimate for f in files)
    over = total > MAX_CONTEXT_TOKENS
    warning = total > WARN_CONTEXT_TOKENS and not over

    if over:
        message = (
            f"Context too large ({format_token_count(total)}/"
            f"{format_token_count(MAX_CONTEXT_TOKENS)}). Remove some files."
        )
    elif warning:
        message = f"{format_token_count(total)} tokens - approaching limit"
    else:
        message = f"{format_token_count(total)} tokens loaded"

    return ContextStatus(total_tokens=total, is_over_limit=over, is_warning=warning, message=message)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

@dataclass
class ChatSession:
    messages: list[ChatMessage] = field(default_factory=list)
    _files: dict[str, LoadedFile] = field(default_factory=dict, repr=False)

    def add_message(self, role: str, content: str) -> ChatMessage:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown role: {role}")
        message = ChatMessage(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            timestamp=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    def history(self) -> list[dict[str, Any]]:
        """Messages in the plain role/content shape the adapters take."""
        return [{"role": m.role, "content": m.content} for m in self.messages]

    @property
    def loaded_files(self) -> list[LoadedFile]:
        return list(self._files.values())

    def load_file(self, file: LoadedFile) -> None:
        self._files.pop(file.path, None)
        self._files[file.path] = file

    def remove_file(self, path: str) -> bool:
        return self._files.pop(path, None) is not None

    def new_chat(self) -> None:
        self.messages.clear()
        self._files.clear()

    def context_status(self) -> ContextStatus:
        return context_status(self.loaded_files)
