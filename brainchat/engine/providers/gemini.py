# gemini.py — Gemini provider
#
# Translates between the engine's callback interface and the Gemini
# streamGenerateContent API (google-genai async client). Handles: user/model
# roles, system_instruction, function_call parts, and usage_metadata where the
# latest chunk's counters win within a request.

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors

from ..config import GEMINI, LOAD_FILE_TOOL, MAX_OUTPUT_TOKENS, get_models_for_provider
from ..types import KeyValidationResult, SendMessageOptions
from .base import (
    ToolRoundLimitExceeded,
    abortable,
    as_dict,
    check_aborted,
    describe_error,
    finish_turn,
    iterate_stream,
    resolve_tool_call,
    run_guarded,
)

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
BLOCKED_MESSAGE = "Response was blocked by safety filters. Try rephrasing your question."


def create_client(api_key: str) -> genai.Client:
    """Create a Gemini API client."""
    return genai.Client(api_key=api_key)


def get_models():
    return get_models_for_provider(GEMINI)


async def validate_key(key: str) -> KeyValidationResult:
    client = create_client(key)
    try:
        await client.aio.models.list()
    except genai_errors.APIError as exc:
        # Gemini answers a bad key with 400 API_KEY_INVALID
        if exc.code in (400, 401, 403):
            return KeyValidationResult(valid=False, error="Invalid API key")
        return KeyValidationResult(valid=False, error=describe_error(exc))
    except httpx.HTTPError as exc:
        logger.debug("Key validation could not reach Gemini: %s", exc)
        return KeyValidationResult(valid=False, error="Failed to validate key")
    return KeyValidationResult(valid=True)


async def send_message(options: SendMessageOptions) -> None:
    """Stream one chat turn, resolving load_file rounds until the model answers."""
    options.callbacks.emit("on_start")
    await run_guarded(_run_turn(options), options.callbacks, describe=_describe_error)


def _describe_error(exc: BaseException) -> str:
    message = describe_error(exc)
    lowered = message.lower()
    if "blocked" in lowered or "safety" in lowered:
        return BLOCKED_MESSAGE
    return message


# ---------------------------------------------------------------------------
# Turn loop
# ---------------------------------------------------------------------------

async def _run_turn(options: SendMessageOptions) -> None:
    callbacks = options.callbacks
    client = create_client(options.api_key)
    config = _build_config(options)

    contents: list[dict[str, Any]] = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
        for m in options.messages
    ]
    full_text = ""
    input_tokens = 0
    output_tokens = 0
    rounds = 0

    while True:
        check_aborted(options.abort_signal)
        result = await _stream_round(client, config, contents, options)

        full_text += result["text"]
        input_tokens += result["input_tokens"]
        output_tokens += result["output_tokens"]

        # No explicit finish reason precedes function calls; their presence ends the round
        calls: list[dict[str, Any]] = result["calls"]
        if not calls or options.load_file_contents is None:
            break
        if rounds >= options.max_tool_rounds:
            raise ToolRoundLimitExceeded(rounds)
        rounds += 1
        logger.debug("Tool round %d: %d function call(s)", rounds, len(calls))

        responses: list[dict[str, Any]] = []
        for call in calls:
            content = await resolve_tool_call(
                call["name"], call["args"], options.load_file_contents, callbacks, options.abort_signal,
            )
            responses.append({
                "function_response": {"name": call["name"], "response": {"content": content}},
            })

        model_parts: list[Any] = []
        if result["text"]:
            model_parts.append({"text": result["text"]})
        # Echo the SDK parts as received so thought signatures survive the round trip
        model_parts.extend(call["part"] for call in calls)

        contents.append({"role": "model", "parts": model_parts})
        contents.append({"role": "user", "parts": responses})

    finish_turn(callbacks, options.model_id, input_tokens, output_tokens, 0, full_text)


def _build_config(options: SendMessageOptions) -> dict[str, Any]:
    config: dict[str, Any] = {
        "system_instruction": options.system_prompt,
        "max_output_tokens": MAX_OUTPUT_TOKENS,
        "temperature": TEMPERATURE,
    }
    if options.load_file_contents is not None:
        config["tools"] = [{"function_declarations": [LOAD_FILE_TOOL]}]
    return config


async def _stream_round(
    client: genai.Client,
    config: dict[str, Any],
    contents: list[dict[str, Any]],
    options: SendMessageOptions,
) -> dict[str, Any]:
    callbacks = options.callbacks
    stream = await abortable(
        client.aio.models.generate_content_stream(
            model=options.model_id,
            contents=list(contents),
            config=config,
        ),
        options.abort_signal,
    )

    text = ""
    input_tokens = 0
    output_tokens = 0
    calls: list[dict[str, Any]] = []

    async with aclosing(iterate_stream(stream, options.abort_signal)) as chunks:
        async for raw in chunks:
            raw_parts = _raw_parts(raw)
            chunk = as_dict(raw)
            candidates = chunk.get("candidates") or []
            candidate = candidates[0] if candidates else {}
            parts = (candidate.get("content") or {}).get("parts") or []

            for position, part in enumerate(parts):
                if part.get("text") and not part.get("thought"):
                    text += part["text"]
                    callbacks.emit("on_token", part["text"])

                function_call = part.get("function_call")
                if function_call:
                    args = function_call.get("args") or {}
                    calls.append({
                        "name": function_call.get("name", ""),
                        "args": args,
                        "part": raw_parts[position] if position < len(raw_parts) else part,
                    })
                    if function_call.get("name") == LOAD_FILE_TOOL["name"]:
                        callbacks.emit("on_file_load", args.get("path") or "Loading file...")

            usage = chunk.get("usage_metadata")
            if usage:
                input_tokens = usage.get("prompt_token_count") or input_tokens
                output_tokens = usage.get("candidates_token_count") or output_tokens

    return {
        "text": text,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "calls": calls,
    }


def _raw_parts(raw: Any) -> list[Any]:
    """Parts of the first candidate as the SDK delivered them."""
    if isinstance(raw, dict):
        candidates = raw.get("candidates") or []
        content = candidates[0].get("content") if candidates else None
        return list((content or {}).get("parts") or [])
    candidates = getattr(raw, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    return list(getattr(content, "parts", None) or [])
