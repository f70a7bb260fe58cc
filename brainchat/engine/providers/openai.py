# openai.py — GPT provider
#
# Translates between the engine's callback interface and OpenAI's streaming
# Chat Completions API. Handles: developer-role system prompt, tool_calls
# deltas accumulated by index, and the load_file tool rounds.
#
# Web search and code execution are not run natively here; those toggles
# are accepted and ignored.

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any

import openai

from ..config import LOAD_FILE_TOOL, MAX_OUTPUT_TOKENS, OPENAI, get_models_for_provider
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


def create_client(api_key: str) -> openai.AsyncOpenAI:
    """Create an OpenAI API client."""
    return openai.AsyncOpenAI(api_key=api_key)


def get_models():
    return get_models_for_provider(OPENAI)


async def validate_key(key: str) -> KeyValidationResult:
    """The models list is lightweight and still checks the key."""
    client = create_client(key)
    try:
        await client.models.list()
    except openai.APIStatusError as exc:
        if exc.status_code in (401, 403):
            return KeyValidationResult(valid=False, error="Invalid API key")
        return KeyValidationResult(valid=False, error=describe_error(exc))
    except openai.APIConnectionError as exc:
        logger.debug("Key validation could not reach OpenAI: %s", exc)
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

    messages: list[dict[str, Any]] = [{"role": "developer", "content": options.system_prompt}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in options.messages)

    full_text = ""
    input_tokens = 0
    output_tokens = 0
    rounds = 0

    while True:
        check_aborted(options.abort_signal)
        result = await _stream_round(client, request, messages, options)

        full_text += result["text"]
        input_tokens += result["input_tokens"]
        output_tokens += result["output_tokens"]

        pending: list[PendingToolCall] = result["pending"]
        wants_tools = result["finish_reason"] == "tool_calls" and pending
        if not wants_tools or options.load_file_contents is None:
            break
        if rounds >= options.max_tool_rounds:
            raise ToolRoundLimitExceeded(rounds)
        rounds += 1
        logger.debug("Tool round %d: %d pending call(s)", rounds, len(pending))

        tool_messages: list[dict[str, Any]] = []
        for call in pending:
            content = await resolve_tool_call(
                call.name,
                parse_json_object(call.arguments),
                options.load_file_contents,
                callbacks,
                options.abort_signal,
            )
            tool_messages.append({"role": "tool", "tool_call_id": call.id, "content": content})

        messages.append({
            "role": "assistant",
            "content": result["text"] or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in pending
            ],
        })
        messages.extend(tool_messages)

    finish_turn(callbacks, options.model_id, input_tokens, output_tokens, 0, full_text)


def _build_request(options: SendMessageOptions) -> dict[str, Any]:
    request: dict[str, Any] = {
        "model": options.model_id,
        "max_completion_tokens": MAX_OUTPUT_TOKENS,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if options.load_file_contents is not None:
        request["tools"] = [{
            "type": "function",
            "function": {
                "name": LOAD_FILE_TOOL["name"],
                "description": LOAD_FILE_TOOL["description"],
                "parameters": LOAD_FILE_TOOL["parameters"],
            },
        }]
    return request


async def _stream_round(
    client: openai.AsyncOpenAI,
    request: dict[str, Any],
    messages: list[dict[str, Any]],
    options: SendMessageOptions,
) -> dict[str, Any]:
    callbacks = options.callbacks
    stream = await abortable(
        client.chat.completions.create(messages=list(messages), **request),
        options.abort_signal,
    )

    text = ""
    input_tokens = 0
    output_tokens = 0
    finish_reason = ""
    pending: dict[int, PendingToolCall] = {}

    async with aclosing(iterate_stream(stream, options.abort_signal)) as chunks:
        async for raw in chunks:
            chunk = as_dict(raw)
            choices = chunk.get("choices") or []
            choice = choices[0] if choices else {}
            delta = choice.get("delta") or {}

            if delta.get("content"):
                text += delta["content"]
                callbacks.emit("on_token", delta["content"])

            for tool_call in delta.get("tool_calls") or []:
                index = tool_call.get("index") or 0
                function = tool_call.get("function") or {}
                call = pending.get(index)
                if call is None:
                    call = PendingToolCall(id=tool_call.get("id") or "", name=function.get("name") or "", index=index)
                    pending[index] = call
                    if call.name == LOAD_FILE_TOOL["name"]:
                        callbacks.emit("on_file_load", "Loading file...")
                if tool_call.get("id"):
                    call.id = tool_call["id"]
                if function.get("name"):
                    call.name = function["name"]
                if function.get("arguments"):
                    call.arguments += function["arguments"]
                    file_load_progress(call.name, call.arguments, callbacks)

            if choice.get("finish_reason"):
                finish_reason = choice["finish_reason"]

            # With include_usage the final chunk carries totals for this request
            usage = chunk.get("usage")
            if usage:
                input_tokens = usage.get("prompt_tokens") or 0
                output_tokens = usage.get("completion_tokens") or 0

    return {
        "text": text,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "finish_reason": finish_reason,
        "pending": [pending[i] for i in sorted(pending)],
    }
