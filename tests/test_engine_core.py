# test_engine_core.py — Catalog, cost, tool resolution, and error helpers
#
# Run: python -m pytest tests/test_engine_core.py

from __future__ import annotations

import asyncio
import unittest

from brainchat.engine import config
from brainchat.engine.config import (
    MODELS,
    calculate_cost,
    get_default_model_for_provider,
    get_model_by_id,
    get_provider_config,
    validate_key_format,
)
from brainchat.engine.providers import get_provider
from brainchat.engine.providers.base import (
    StreamAborted,
    abortable,
    describe_error,
    is_auth_error,
    parse_json_object,
    resolve_tool_call,
)
from brainchat.engine.types import StreamCallbacks


class CatalogTests(unittest.TestCase):
    def test_every_provider_has_a_cheap_default(self):
        for provider in config.ALL_PROVIDERS:
            model = get_default_model_for_provider(provider)
            self.assertEqual(model.provider, provider)
            self.assertEqual(model.tier, "cheap")

    def test_model_lookup(self):
        self.assertEqual(get_model_by_id("claude-sonnet-4-5-20250929").display_name, "Sonnet 4.5")
        self.assertIsNone(get_model_by_id("gpt-2"))

    def test_unknown_provider_raises(self):
        with self.assertRaises(ValueError):
            get_provider_config("mistral")
        with self.assertRaises(ValueError):
            get_provider("mistral")

    def test_key_format(self):
        self.assertTrue(validate_key_format("sk-ant-abc", "anthropic"))
        self.assertFalse(validate_key_format("sk-abc", "anthropic"))
        self.assertTrue(validate_key_format("sk-proj-abc", "openai"))
        self.assertTrue(validate_key_format("AIzaSy", "gemini"))
        self.assertFalse(validate_key_format("sk-abc", "gemini"))

    def test_only_anthropic_runs_native_tools(self):
        self.assertTrue(get_provider_config("anthropic").supports_web_search)
        self.assertFalse(get_provider_config("openai").supports_web_search)
        self.assertFalse(get_provider_config("gemini").supports_code_execution)


class CostTests(unittest.TestCase):
    def test_million_input_tokens_costs_the_input_rate(self):
        for model in MODELS:
            self.assertEqual(calculate_cost(1_000_000, 0, model.id, 0), model.input_cost_per_million)

    def test_million_output_tokens_costs_the_output_rate(self):
        for model in MODELS:
            self.assertEqual(calculate_cost(0, 1_000_000, model.id, 0), model.output_cost_per_million)

    def test_unknown_model_is_free(self):
        self.assertEqual(calculate_cost(5_000, 5_000, "mystery-model", 3), 0)

    def test_web_searches_are_flat_rate(self):
        base = calculate_cost(1000, 1000, "claude-haiku-4-5-20251001")
        self.assertAlmostEqual(calculate_cost(1000, 1000, "claude-haiku-4-5-20251001", 2), base + 0.02)


class ToolResolutionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.events = []
        self.callbacks = StreamCallbacks(
            on_file_load=lambda path: self.events.append(("load", path)),
            on_file_loaded=lambda path, ok: self.events.append(("loaded", path, ok)),
        )

    async def test_existing_file(self):
        async def loader(paths):
            return [{"path": paths[0], "content": "# Notes"}]

        result = await resolve_tool_call("load_file", {"path": "a.md"}, loader, self.callbacks)
        self.assertEqual(result, "File: a.md\n\n# Notes")
        self.assertEqual(self.events, [("load", "a.md"), ("loaded", "a.md", True)])

    async def test_too_large_counts_as_failure(self):
        async def loader(paths):
            return [{"path": paths[0], "content": "[File too large: 300KB, max 100KB]"}]

        result = await resolve_tool_call("load_file", {"path": "big.md"}, loader, self.callbacks)
        self.assertTrue(result.startswith('Error: Could not load file "big.md"'))
        self.assertEqual(self.events[-1], ("loaded", "big.md", False))

    async def test_loader_exception_becomes_text(self):
        async def loader(paths):
            raise RuntimeError("network down")

        result = await resolve_tool_call("load_file", {"path": "a.md"}, loader, self.callbacks)
        self.assertEqual(result, "Error loading file: network down")

    async def test_missing_path_argument(self):
        async def loader(paths):
            raise AssertionError("loader should not run")

        result = await resolve_tool_call("load_file", None, loader, self.callbacks)
        self.assertEqual(result, "Error loading file: missing or invalid path argument")
        self.assertEqual(self.events, [("load", ""), ("loaded", "", False)])

    async def test_wrong_argument_name_reports_blank_path(self):
        async def loader(paths):
            raise AssertionError("loader should not run")

        result = await resolve_tool_call("load_file", {"file": "a.md"}, loader, self.callbacks)
        self.assertTrue(result.startswith("Error loading file"))
        self.assertEqual(self.events, [("load", ""), ("loaded", "", False)])

    async def test_unknown_tool(self):
        async def loader(paths):
            raise AssertionError("loader should not run")

        result = await resolve_tool_call("delete_everything", {}, loader, self.callbacks)
        self.assertEqual(result, "Error: Unknown tool delete_everything")
        self.assertEqual(self.events, [])


class AbortableTests(unittest.IsolatedAsyncioTestCase):
    async def test_already_set_signal_aborts_immediately(self):
        signal = asyncio.Event()
        signal.set()
        with self.assertRaises(StreamAborted):
            await abortable(asyncio.sleep(10), signal)

    async def test_result_passes_through(self):
        async def value():
            return 42

        self.assertEqual(await abortable(value(), asyncio.Event()), 42)

    async def test_signal_interrupts_pending_await(self):
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, signal.set)
        with self.assertRaises(StreamAborted):
            await asyncio.wait_for(abortable(asyncio.sleep(10), signal), timeout=5)


class HelperTests(unittest.TestCase):
    def test_parse_json_object(self):
        self.assertEqual(parse_json_object('{"path": "a"}'), {"path": "a"})
        self.assertIsNone(parse_json_object('{"path": '))
        self.assertIsNone(parse_json_object("[1, 2]"))
        self.assertIsNone(parse_json_object(""))

    def test_describe_error_prefers_vendor_message(self):
        class FakeStatusError(Exception):
            status_code = 429
            body = {"error": {"message": "Rate limited"}}

        self.assertEqual(describe_error(FakeStatusError()), "Rate limited")

    def test_describe_error_auth(self):
        class FakeAuthError(Exception):
            status_code = 401
            body = None
            message = "invalid x-api-key"

        self.assertEqual(describe_error(FakeAuthError()), "Authentication failed (401): invalid x-api-key")

    def test_describe_error_status_fallback(self):
        class Bare(Exception):
            status_code = 500

        self.assertEqual(describe_error(Bare()), "API error: 500")

    def test_is_auth_error(self):
        self.assertTrue(is_auth_error("Authentication failed (401): nope"))
        self.assertTrue(is_auth_error("Invalid API key"))
        self.assertFalse(is_auth_error("Rate limited"))


if __name__ == "__main__":
    unittest.main()
