# websocket.py — Streaming chat over a WebSocket
#
# The frontend connects once per chat view and sends typed JSON messages:
#   {"type": "chat", "messages": [...], "files": [...], "model": "..."}
#   {"type": "stop"}       — abort the turn in flight
#   {"type": "ping"}       — keepalive
#
# Every adapter callback becomes one typed event on the socket:
#   start, token, usage, complete, error, web_search, web_search_results,
#   web_fetch, web_fetch_complete, code_execution, code_execution_complete,
#   tool_error, file_load, file_loaded
# plus files_discovered (auto-loaded before the turn), stopped, and pong.
#
# Usage in server.py:
#   from brainchat.api.websocket import ws_router, init_chat
#   app.include_router(ws_router)

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict
from typing import Any, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from brainchat.db.repository import PreferenceStore
from brainchat.engine.engine import ChatEngine
from brainchat.engine.providers.base import is_auth_error
from brainchat.engine.types import StreamCallbacks, UsageData
from brainchat.identity.prompt import build_system_prompt
from brainchat.messaging.conversation import ChatSession, LoadedFile

logger = logging.getLogger(__name__)

ws_router = APIRouter()

AUTO_DISCOVER_FILES = 3

# These get set by server.py at startup
_engine: ChatEngine | None = None
_store: PreferenceStore | None = None


def init_chat(engine: ChatEngine, store: PreferenceStore) -> None:
    """Wire up the chat socket with runtime references."""
    global _engine, _store
    _engine = engine
    _store = store


# ===================================================================
# Callback -> event mapping
# ===================================================================

def build_callbacks(send: Callable[[dict[str, Any]], None], on_auth_error: Callable[[], None]) -> StreamCallbacks:
    """Callbacks that turn each adapter hook into one outgoing event."""

    def usage(data: UsageData) -> None:
        send({"type": "usage", **asdict(data)})

    def error(message: str) -> None:
        auth = is_auth_error(message)
        if auth:
            on_auth_error()
        send({"type": "error", "error": message, "auth_error": auth})

    return StreamCallbacks(
        on_start=lambda: send({"type": "start"}),
        on_token=lambda token: send({"type": "token", "token": token}),
        on_complete=lambda text: send({"type": "complete", "content": text}),
        on_error=error,
        on_usage=usage,
        on_web_search=lambda query: send({"type": "web_search", "query": query}),
        on_web_search_results=lambda count: send({"type": "web_search_results", "count": count}),
        on_web_fetch=lambda url: send({"type": "web_fetch", "url": url}),
        on_web_fetch_complete=lambda: send({"type": "web_fetch_complete"}),
        on_code_execution=lambda status: send({"type": "code_execution", "status": status}),
        on_code_execution_complete=lambda: send({"type": "code_execution_complete"}),
        on_tool_error=lambda tool, message: send({"type": "tool_error", "tool": tool, "error": message}),
        on_file_load=lambda path: send({"type": "file_load", "path": path}),
        on_file_loaded=lambda path, ok: send({"type": "file_loaded", "path": path, "success": ok}),
    )


# ===================================================================
# Turn
# ===================================================================

async def run_chat_turn(
    engine: ChatEngine,
    store: PreferenceStore,
    request: dict[str, Any],
    send: Callable[[dict[str, Any]], None],
    abort_signal: asyncio.Event,
) -> None:
    """One chat turn: auto-load relevant files, build the prompt, stream the reply."""
    provider = engine.active_provider
    api_key = store.get_api_key(provider)
    if not api_key:
        send({"type": "error", "error": "No API key configured", "auth_error": True})
        return

    session = ChatSession()
    for m in request.get("messages") or []:
        session.add_message(m["role"], m["content"])
    for f in request.get("files") or []:
        session.load_file(LoadedFile.from_content(f["path"], f.get("content", "")))

    tree = await engine.fetch_file_tree()

    # Progressive disclosure: pull in files the question names
    last = session.messages[-1] if session.messages else None
    question = last.content if last is not None and last.role == "user" else ""
    discovered = await engine.discover_files(
        question,
        tree,
        max_files=AUTO_DISCOVER_FILES,
        exclude={f.path for f in session.loaded_files},
    )
    if discovered:
        for f in discovered:
            session.load_file(f)
        send({
            "type": "files_discovered",
            "files": [asdict(f) for f in discovered],
            "context": asdict(session.context_status()),
        })

    tools = engine.tool_options_for(provider)
    system_prompt = build_system_prompt(session.loaded_files, tree, tools)

    await engine.send_message(
        session.history(),
        system_prompt,
        api_key,
        build_callbacks(send, lambda: store.clear_api_key(provider)),
        model_id=request.get("model"),
        tool_options=tools,
        abort_signal=abort_signal,
        provider=provider,
    )
    if abort_signal.is_set():
        send({"type": "stopped"})


# ===================================================================
# Connection
# ===================================================================

def _report_failure(task: asyncio.Task, send: Callable[[dict[str, Any]], None]) -> None:
    if task.cancelled() or task.exception() is None:
        return
    logger.error("Chat turn failed", exc_info=task.exception())
    send({"type": "error", "error": str(task.exception()) or "Failed to send message", "auth_error": False})


async def _pump(ws: WebSocket, outbox: asyncio.Queue) -> None:
    """Send queued events in order until the None sentinel arrives."""
    while True:
        event = await outbox.get()
        if event is None:
            return
        try:
            await ws.send_json(event)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Socket closed, dropping %s event", event.get("type"))
            return


@ws_router.websocket("/ws/chat")
async def chat_endpoint(ws: WebSocket):
    """One socket per chat view. At most one turn runs at a time."""
    await ws.accept()

    if _engine is None or _store is None:
        await ws.send_json({"type": "error", "error": "Engine not initialized"})
        await ws.close()
        return

    outbox: asyncio.Queue = asyncio.Queue()
    sender = asyncio.create_task(_pump(ws, outbox))
    turn: asyncio.Task | None = None
    abort_signal: asyncio.Event | None = None

    try:
        while True:
            data = await ws.receive_json()
            kind = data.get("type")

            if kind == "chat":
                if turn is not None and not turn.done():
                    outbox.put_nowait({"type": "error", "error": "A response is already streaming"})
                    continue
                abort_signal = asyncio.Event()
                turn = asyncio.create_task(
                    run_chat_turn(_engine, _store, data, outbox.put_nowait, abort_signal)
                )
                turn.add_done_callback(lambda task: _report_failure(task, outbox.put_nowait))
            elif kind == "stop":
                if abort_signal is not None:
                    abort_signal.set()
            elif kind == "ping":
                outbox.put_nowait({"type": "pong", "time": time.time()})
            else:
                outbox.put_nowait({"type": "error", "error": f"Unknown message type: {kind}"})
    except WebSocketDisconnect:
        logger.debug("Chat socket closed")
    finally:
        if abort_signal is not None:
            abort_signal.set()
        if turn is not None:
            await asyncio.gather(turn, return_exceptions=True)
        # The pump drains what the turn queued, then exits on the sentinel
        outbox.put_nowait(None)
