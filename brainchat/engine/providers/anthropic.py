# anthropic.py — Claude provider
#
# Translates between the engine's callback interface and Anthropic's streaming
# Messages API. Handles: load_file tool rounds, native web search / web fetch /
# code execution blocks, and usage accumulated across every round of a turn.

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any

import anthropic

from ..config import (
    ANTHROPIC,
    LOAD_FILE_TOOL,
    MAX_OUTPUT_TOKENS,
    WEB_SEARCH_MAX_USES,
    get_default_model_for_provider,
    get_models_for_provider,
)
from ..types import KeyValidationResult, PendingToolCall, SendMessageOptions
from .base import (
    ToolRoundLimitExceeded,
    abortable,
    as_dict,
    check_aborted,
    describe_error,
    file_load_progress,
    finish_turn,
    iterate_stream,
    parse_json_object,
    resolve_tool_call,
    run_guarded,
)

logger = logging.getLogger(__name__)

CODE_EXECUTION_BETA = "code-execution-2025-05-22"
WEB_FETCH_BETA = "web-fetch-2025-09-10"


def create_client(api_key: str) -> anthropic.AsyncAnthropic:
    """Create an Anthropic API client."""
    return anthropic.AsyncAnthropic(api_key=api_key)


def get_models():
    return get_models_for_provider(ANTHROPIC)


async def validate_key(key: str) -> KeyValidationResult:
    """Validate a key with the smallest possible request."""
    client = create_client(key)
    try:
        await client.messages.create(
            model=get_default_model_for_provider(ANTHROPIC).id,
            max_tokens=10,
            messages=[{"role": "user", "content": "Hi"}],
        )
    except anthropic.APIStatusError as exc:
        if exc.status_code == 401:
            return KeyValidationResult(valid=False, error="Invalid API key")
        if exc.status_code == 403:
            return KeyValidationResult(valid=False, error="API key lacks required permissions")
        return KeyValidationResult(valid=False, error=describe_error(exc))
    except anthropic.APIConnectionError as exc:
        logger.debug("Key validation could not reach Anthropic: %s", exc)
        return KeyValidationResult(valid=False, error="Failed to validate key")
    return KeyValidationResult(valid=True)


async def send_message(options: SendMessageOptions) -> None:
    """Stream one chat turn, resolving load_file rounds until the model answers."""
    options.callbacks.emit("on_start")
    await run_guarded(_run_turn(options), options.callbacks)


# ---------------------------------------------------------------------------
# Turn loop
# ---------------------------------------------------------------------------

async def _run_turn(options: SendMessageOptions) -> None:
    callbacks = options.callbacks
    client = create_client(options.api_key)
    request = _build_request(options)

    messages: list[dict[str, Any]] = [
        {"role": m["role"], "content": m["content"]} for m in options.messages
    ]
    full_text = ""
    input_tokens = 0
    output_tokens = 0
    web_searches = 0
    rounds = 0

    while True:
        check_aborted(options.abort_signal)
        result = await _stream_round(client, request, messages, options)

        full_text += result["text"]
        input_tokens += result["input_tokens"]
        output_tokens += result["output_tokens"]
        web_searches += result["web_searches"]

        pending: list[PendingToolCall] = result["pending"]
        wants_tools = result["stop_reason"] == "tool_use" and pending
        if not wants_tools or options.load_file_contents is None:
            break
        if rounds >= options.max_tool_rounds:
            raise ToolRoundLimitExceeded(rounds)
        rounds += 1
        logger.debug("Tool round %d: %d pending call(s)", rounds, len(pending))

        assistant_content: list[dict[str, Any]] = []
        if result["text"]:
            assistant_content.append({"type": "text", "text": result["text"]})
        tool_results: list[dict[str, Any]] = []
        for call in pending:
            args = parse_json_object(call.arguments)
            assistant_content.append({
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": args or {},
            })
            content = await resolve_tool_call(
                call.name, args, options.load_file_contents, callbacks, options.abort_signal,
            )
            tool_results.append({
                "type": "tool_result",
                "tool_use_id": call.id,
                "content": content,
            })

        messages.append({"role": "assistant", "content": assistant_content})
        messages.append({"role": "user", "content": tool_results})

    finish_turn(callbacks, options.model_id, input_tokens, output_tokens, web_searches, full_text)


def _build_request(options: SendMessageOptions) -> dict[str, Any]:
    tools: list[dict[str, Any]] = []
    betas: list[str] = []

    if options.load_file_contents is not None:
        tools.append({
            "name": LOAD_FILE_TOOL["name"],
            "description": LOAD_FILE_TOOL["description"],
            "input_schema": LOAD_FILE_TOOL["parameters"],
        })
    if options.enable_web_search:
        tools.append({
            "type": "web_search_20250305",
            "name": "web_search",
            "max_uses": WEB_SEARCH_MAX_USES,
        })
    if options.enable_web_fetch:
        tools.append({"type": "web_fetch_20250910", "name": "web_fetch"})
        betas.append(WEB_FETCH_BETA)
    if options.enable_code_execution:
        tools.append({"type": "code_execution_20250522", "name": "code_execution"})
        betas.append(CODE_EXECUTION_BETA)

    request: dict[str, Any] = {
        "model": options.model_id,
        "max_tokens": MAX_OUTPUT_TOKENS,
        "system": options.system_prompt,
        "stream": True,
    }
    if tools:
        request["tools"] = tools
    if betas:
        request["extra_headers"] = {"anthropic-beta": ",".join(betas)}
    return request


async def _stream_round(
    client: anthropic.AsyncAnthropic,
    request: dict[str, Any],
    messages: list[dict[str, Any]],
    options: SendMessageOptions,
) -> dict[str, Any]:
    """Run one streaming request and collect its text, tool calls, and usage."""
    callbacks = options.callbacks
    stream = await abortable(
        client.messages.create(messages=list(messages), **request),
        options.abort_signal,
    )

    text = ""
    input_tokens = 0
    output_tokens = 0
    web_searches = 0
    stop_reason = ""
    pending: list[PendingToolCall] = []
    current: PendingToolCall | None = None
    current_kind = ""

    async with aclosing(iterate_stream(stream, options.abort_signal)) as events:
        async for raw in events:
            event = as_dict(raw)
            event_type = event.get("type")

            if event_type == "content_block_start":
                block = event.get("content_block") or {}
                block_type = block.get("type", "")
                current_kind = block_type
                if block_type in ("tool_use", "server_tool_use"):
                    current = PendingToolCall(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        index=event.get("index", 0),
                    )
                if block_type == "tool_use" and current.name == LOAD_FILE_TOOL["name"]:
                    callbacks.emit("on_file_load", "Loading file...")
                elif block_type == "server_tool_use":
                    _server_tool_started(current.name, callbacks)
                elif block_type:
                    web_searches += _tool_result_block(block, callbacks)

            elif event_type == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    text += delta["text"]
                    callbacks.emit("on_token", delta["text"])
                elif delta.get("type") == "input_json_delta" and current is not None:
                    current.arguments += delta.get("partial_json", "")
                    if current_kind == "server_tool_use":
                        _server_tool_progress(current, callbacks)
                    else:
                        file_load_progress(current.name, current.arguments, callbacks)

            elif event_type == "content_block_stop":
                if current is not None and current_kind == "tool_use":
                    pending.append(current)
                current = None
                current_kind = ""

            elif event_type == "message_start":
                usage = (event.get("message") or {}).get("usage") or {}
                input_tokens += usage.get("input_tokens") or 0

            elif event_type == "message_delta":
                usage = event.get("usage") or {}
                output_tokens += usage.get("output_tokens") or 0
                stop_reason = (event.get("delta") or {}).get("stop_reason") or stop_reason

    return {
        "text": text,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "web_searches": web_searches,
        "stop_reason": stop_reason,
        "pending": pending,
    }


# ---------------------------------------------------------------------------
# Native tool blocks
# ---------------------------------------------------------------------------

def _server_tool_started(name: str, callbacks) -> None:
    if name == "web_search":
        callbacks.emit("on_web_search", "Searching the web...")
    elif name == "web_fetch":
        callbacks.emit("on_web_fetch", "Fetching page...")
    elif name == "code_execution":
        callbacks.emit("on_code_execution", "Running code...")


def _server_tool_progress(call: PendingToolCall, callbacks) -> None:
    args = parse_json_object(call.arguments)
    if not args:
        return
    if call.name == "web_search" and args.get("query"):
        callbacks.emit("on_web_search", args["query"])
    elif call.name == "web_fetch" and args.get("url"):
        callbacks.emit("on_web_fetch", args["url"])


def _tool_result_block(block: dict[str, Any], callbacks) -> int:
    """Report a native tool result block. Returns 1 for a completed web search."""
    block_type = block.get("type", "")
    content = block.get("content")
    error = content if isinstance(content, dict) and content.get("type", "").endswith("_error") else None

    if block_type == "web_search_tool_result":
        if error is not None:
            callbacks.emit("on_tool_error", "web_search", _error_text(error, "Web search failed"))
            return 0
        results = content if isinstance(content, list) else block.get("search_results")
        if isinstance(results, list):
            callbacks.emit("on_web_search_results", len(results))
            return 1
    elif block_type == "web_search_tool_result_error":
        callbacks.emit("on_tool_error", "web_search", _error_text(block, "Web search failed"))
    elif block_type == "code_execution_tool_result":
        if error is not None:
            callbacks.emit("on_tool_error", "code_execution", _error_text(error, "Code execution failed"))
        else:
            callbacks.emit("on_code_execution_complete")
    elif block_type == "code_execution_tool_result_error":
        callbacks.emit("on_tool_error", "code_execution", _error_text(block, "Code execution failed"))
    elif block_type == "web_fetch_tool_result":
        if error is not None:
            callbacks.emit("on_tool_error", "web_fetch", _error_text(error, "URL fetch failed"))
        else:
            callbacks.emit("on_web_fetch_complete")
    return 0


def _error_text(block: dict[str, Any], fallback: str) -> str:
    return block.get("error_message") or block.get("error_code") or fallback
