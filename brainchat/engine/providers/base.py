# base.py — Helpers shared by the provider adapters
#
# Handles: abortable stream iteration, load_file tool resolution,
# end-of-turn usage/complete reporting, and the single top-level
# error funnel that turns exceptions into on_error callbacks.

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from ..config import LOAD_FILE_TOOL, calculate_cost
from ..types import FileLoader, StreamCallbacks, UsageData

logger = logging.getLogger(__name__)

# Content prefixes the file loader uses instead of failing the whole batch
ERROR_MARKERS = ("[Error", "[File too large")


class StreamAborted(Exception):
    """The caller's abort signal fired while a turn was in flight."""


class ToolRoundLimitExceeded(RuntimeError):
    def __init__(self, rounds: int):
        super().__init__(f"Stopped after {rounds} tool-call round trips without a final answer")
        self.rounds = rounds


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def check_aborted(abort_signal: asyncio.Event | None) -> None:
    if abort_signal is not None and abort_signal.is_set():
        raise StreamAborted()


async def abortable(awaitable: Awaitable[Any], abort_signal: asyncio.Event | None) -> Any:
    """Await `awaitable`, giving up with StreamAborted as soon as the signal fires."""
    if abort_signal is not None and abort_signal.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise StreamAborted()
    if abort_signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort_signal.wait())
    done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.wait({task})
    raise StreamAborted()


async def close_stream(stream: Any) -> None:
    for name in ("close", "aclose"):
        closer = getattr(stream, name, None)
        if closer is None:
            continue
        result = closer()
        if inspect.isawaitable(result):
            await result
        return


async def iterate_stream(stream: Any, abort_signal: asyncio.Event | None) -> AsyncIterator[Any]:
    """Yield vendor stream events until the stream ends or the signal fires.

    The vendor stream is always closed on exit. Use with contextlib.aclosing
    so an exception in the consumer closes it too.
    """
    iterator = stream.__aiter__()
    try:
        while True:
            try:
                event = await abortable(iterator.__anext__(), abort_signal)
            except StopAsyncIteration:
                return
            yield event
    finally:
        await close_stream(stream)


# ---------------------------------------------------------------------------
# Event decoding
# ---------------------------------------------------------------------------

def as_dict(obj: Any) -> dict[str, Any]:
    """Normalize an SDK event/model to the plain JSON shape of the wire format."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.model_dump(mode="json", exclude_none=True)


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse accumulated tool arguments. Partial or invalid JSON gives None."""
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Tool resolution
# ---------------------------------------------------------------------------

async def resolve_tool_call(
    name: str,
    args: dict[str, Any] | None,
    loader: FileLoader,
    callbacks: StreamCallbacks,
    abort_signal: asyncio.Event | None = None,
) -> str:
    """Run one pending tool call and return the text fed back to the model."""
    if name != LOAD_FILE_TOOL["name"]:
        logger.warning("Model requested unknown tool %s", name)
        return f"Error: Unknown tool {name}"

    path = args.get("path") if args else None
    if not isinstance(path, str) or not path:
        logger.warning("load_file called without a usable path: %r", args)
        callbacks.emit("on_file_load", "")
        callbacks.emit("on_file_loaded", "", False)
        return "Error loading file: missing or invalid path argument"

    callbacks.emit("on_file_load", path)
    logger.debug("load_file(%s)", path)

    try:
        files = await abortable(loader([path]), abort_signal)
    except StreamAborted:
        raise
    except Exception as exc:
        logger.exception("File loader failed for %s", path)
        callbacks.emit("on_file_loaded", path, False)
        return f"Error loading file: {exc or 'Unknown error'}"

    loaded = files[0] if files else None
    content = loaded.get("content", "") if loaded else ""
    if loaded and not content.startswith(ERROR_MARKERS):
        callbacks.emit("on_file_loaded", path, True)
        return f"File: {loaded.get('path', path)}\n\n{content}"

    callbacks.emit("on_file_loaded", path, False)
    return f'Error: Could not load file "{path}". Make sure the path is correct.'


def file_load_progress(name: str, arguments: str, callbacks: StreamCallbacks) -> None:
    """Surface the target path as soon as partial load_file arguments parse."""
    if name != LOAD_FILE_TOOL["name"]:
        return
    args = parse_json_object(arguments)
    if args and args.get("path"):
        callbacks.emit("on_file_load", args["path"])


# ---------------------------------------------------------------------------
# Turn completion and errors
# ---------------------------------------------------------------------------

def finish_turn(
    callbacks: StreamCallbacks,
    model_id: str,
    input_tokens: int,
    output_tokens: int,
    web_searches: int,
    full_text: str,
) -> None:
    if input_tokens > 0 or output_tokens > 0:
        callbacks.emit(
            "on_usage",
            UsageData(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                web_searches=web_searches,
                cost=calculate_cost(input_tokens, output_tokens, model_id, web_searches),
            ),
        )
    callbacks.emit("on_complete", full_text)


def describe_error(exc: BaseException) -> str:
    """Vendor error text where the SDK exposes it, else a status-based fallback."""
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)

    message = None
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            message = error.get("message")
    if not message:
        message = getattr(exc, "message", None)

    if status == 401:
        return f"Authentication failed (401): {message or 'invalid API key'}"
    if message:
        return str(message)
    if isinstance(status, int):
        return f"API error: {status}"
    return str(exc) or "Failed to send message"


def is_auth_error(message: str) -> bool:
    lowered = message.lower()
    return "401" in lowered or "invalid api key" in lowered or "invalid x-api-key" in lowered


async def run_guarded(
    turn: Awaitable[None],
    callbacks: StreamCallbacks,
    describe: Callable[[BaseException], str] = describe_error,
) -> None:
    """Await a turn; aborts are silent and every other failure goes to on_error."""
    try:
        await turn
    except StreamAborted:
        logger.debug("Turn aborted by caller")
    except asyncio.CancelledError:
        logger.debug("Turn task cancelled")
        raise
    except Exception as exc:
        logger.debug("Turn failed: %r", exc)
        callbacks.emit("on_error", describe(exc))
