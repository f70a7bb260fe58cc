# test_chat.py — ChatEngine orchestration and the chat WebSocket
#
# The provider router is patched so no vendor SDK is called.
#
# Run: python -m pytest tests/test_chat.py

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI, WebSocketDisconnect
from fastapi.testclient import TestClient

from brainchat.api import websocket as chat_ws
from brainchat.api.websocket import init_chat, ws_router
from brainchat.db import session as db_session
from brainchat.db.repository import PreferenceStore
from brainchat.engine.engine import ChatEngine, ToolOptions
from brainchat.engine.types import StreamCallbacks, UsageData

ETHAN_TREE = [
    {"name": "research", "path": "research", "type": "dir", "children": [
        {"name": "20251118-gemini.md", "path": "research/newsletters/ethan/20251118-gemini.md", "type": "file"},
    ]},
]


async def fake_loader(paths):
    return [{"path": p, "content": f"# {p}"} for p in paths]


async def fake_tree():
    return ETHAN_TREE


def fresh_store() -> PreferenceStore:
    db_session.configure("sqlite://")
    db_session.init_db()
    return PreferenceStore()


# ===================================================================
# Engine
# ===================================================================

class ChatEngineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = fresh_store()
        self.engine = ChatEngine(self.store, loader=fake_loader, tree_loader=fake_tree)

    def test_resolve_model(self):
        self.assertEqual(self.engine.resolve_model("anthropic"), "claude-haiku-4-5-20251001")
        self.assertEqual(
            self.engine.resolve_model("anthropic", "claude-sonnet-4-5-20250929"),
            "claude-sonnet-4-5-20250929",
        )
        # A model from another provider falls back to the stored selection
        self.assertEqual(self.engine.resolve_model("openai", "claude-sonnet-4-5-20250929"), "gpt-5-nano")

    def test_tool_gating(self):
        everything = ToolOptions(True, True, True)
        self.assertEqual(self.engine.tool_options_for("anthropic", everything), everything)
        self.assertEqual(
            self.engine.tool_options_for("gemini", everything),
            ToolOptions(enable_web_search=False, enable_web_fetch=True, enable_code_execution=False),
        )

    def test_stored_toggles_are_the_default(self):
        self.store.set_tool_enabled("code_execution", True)
        self.assertTrue(self.engine.tool_options_for("anthropic").enable_code_execution)

    @patch("brainchat.engine.providers.send_message", new_callable=AsyncMock)
    async def test_send_message_builds_options(self, mock_send):
        self.store.set_api_key("openai", "sk-1")
        self.store.set_active_provider("openai")
        callbacks = StreamCallbacks()

        await self.engine.send_message(
            [{"role": "user", "content": "hi"}], "prompt", "sk-1", callbacks,
            tool_options=ToolOptions(enable_web_search=True),
        )

        provider, opts = mock_send.await_args.args
        self.assertEqual(provider, "openai")
        self.assertEqual(opts.model_id, "gpt-5-nano")
        self.assertEqual(opts.system_prompt, "prompt")
        self.assertFalse(opts.enable_web_search)
        self.assertIs(opts.callbacks, callbacks)
        self.assertIs(opts.load_file_contents, fake_loader)

    async def test_load_files_estimates_tokens(self):
        files = await self.engine.load_files(["todo/a.md"])
        self.assertEqual(files[0].path, "todo/a.md")
        self.assertEqual(files[0].token_estimate, 3)

    async def test_loader_failure_gives_empty_list(self):
        async def broken(paths):
            raise RuntimeError("offline")

        engine = ChatEngine(self.store, loader=broken)
        self.assertEqual(await engine.load_files(["a.md"]), [])
        self.assertEqual(await engine.fetch_file_tree(), [])

    async def test_discover_files(self):
        files = await self.engine.discover_files("anything recent from ethan?")
        self.assertEqual([f.path for f in files], ["research/newsletters/ethan/20251118-gemini.md"])

    async def test_discover_files_skips_loaded_and_failed(self):
        path = "research/newsletters/ethan/20251118-gemini.md"
        self.assertEqual(await self.engine.discover_files("anything recent from ethan?", ETHAN_TREE, exclude={path}), [])

        async def not_found(paths):
            return [{"path": p, "content": "[Error loading file: 404]"} for p in paths]

        engine = ChatEngine(self.store, loader=not_found, tree_loader=fake_tree)
        self.assertEqual(await engine.discover_files("anything recent from ethan?"), [])


# ===================================================================
# WebSocket
# ===================================================================

app = FastAPI()
app.include_router(ws_router)


async def scripted_turn(provider, options):
    cb = options.callbacks
    cb.emit("on_start")
    cb.emit("on_token", "Hello")
    cb.emit("on_usage", UsageData(input_tokens=3, output_tokens=1, web_searches=0, cost=0.5))
    cb.emit("on_complete", "Hello")


async def waits_for_stop(provider, options):
    options.callbacks.emit("on_start")
    await options.abort_signal.wait()


async def auth_failure(provider, options):
    options.callbacks.emit("on_start")
    options.callbacks.emit("on_error", "Authentication failed (401): invalid x-api-key")


class ChatSocketTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = fresh_store()
        self.store.set_api_key("anthropic", "sk-ant-1")
        self.engine = ChatEngine(self.store, loader=fake_loader, tree_loader=fake_tree)
        init_chat(self.engine, self.store)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        chat_ws._engine = None
        chat_ws._store = None

    def receive_until(self, ws, event_type: str) -> list[dict]:
        events = []
        while True:
            event = ws.receive_json()
            events.append(event)
            if event["type"] == event_type:
                return events

    def test_streams_typed_events(self):
        with patch("brainchat.engine.providers.send_message", side_effect=scripted_turn) as mock_send:
            with self.client.websocket_connect("/ws/chat") as ws:
                ws.send_json({"type": "chat", "messages": [{"role": "user", "content": "hi"}], "files": []})
                events = self.receive_until(ws, "complete")

        self.assertEqual([e["type"] for e in events], ["start", "token", "usage", "complete"])
        self.assertEqual(events[2]["cost"], 0.5)
        self.assertEqual(events[3]["content"], "Hello")
        self.assertIn("## Your Role", mock_send.call_args.args[1].system_prompt)

    def test_auto_discovers_named_files(self):
        with patch("brainchat.engine.providers.send_message", side_effect=scripted_turn) as mock_send:
            with self.client.websocket_connect("/ws/chat") as ws:
                ws.send_json({
                    "type": "chat",
                    "messages": [{"role": "user", "content": "latest from Ethan?"}],
                    "files": [{"path": "todo/today.md", "content": "- write"}],
                })
                events = self.receive_until(ws, "complete")

        self.assertEqual(events[0]["type"], "files_discovered")
        self.assertEqual(events[0]["files"][0]["path"], "research/newsletters/ethan/20251118-gemini.md")
        prompt = mock_send.call_args.args[1].system_prompt
        self.assertIn("### todo/today.md", prompt)
        self.assertIn("### research/newsletters/ethan/20251118-gemini.md", prompt)
        self.assertTrue(events[0]["context"]["message"].endswith("tokens loaded"))
        self.assertGreater(events[0]["context"]["total_tokens"], 0)

    def test_stop_aborts_turn(self):
        with patch("brainchat.engine.providers.send_message", side_effect=waits_for_stop):
            with self.client.websocket_connect("/ws/chat") as ws:
                ws.send_json({"type": "chat", "messages": [{"role": "user", "content": "hi"}]})
                self.assertEqual(ws.receive_json()["type"], "start")
                ws.send_json({"type": "stop"})
                events = self.receive_until(ws, "stopped")

        self.assertNotIn("complete", [e["type"] for e in events])

    def test_auth_error_clears_key(self):
        with patch("brainchat.engine.providers.send_message", side_effect=auth_failure):
            with self.client.websocket_connect("/ws/chat") as ws:
                ws.send_json({"type": "chat", "messages": [{"role": "user", "content": "hi"}]})
                events = self.receive_until(ws, "error")

        self.assertTrue(events[-1]["auth_error"])
        self.assertFalse(self.store.has_api_key("anthropic"))

    def test_missing_key(self):
        self.store.clear_api_key("anthropic")
        with self.client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "chat", "messages": [{"role": "user", "content": "hi"}]})
            event = ws.receive_json()
        self.assertEqual(event["error"], "No API key configured")

    def test_back_to_back_connections_close_cleanly(self):
        with patch("brainchat.engine.providers.send_message", side_effect=scripted_turn) as mock_send:
            for question in ("hi", "and again", "one more"):
                with self.client.websocket_connect("/ws/chat") as ws:
                    ws.send_json({"type": "chat", "messages": [{"role": "user", "content": question}]})
                    self.receive_until(ws, "complete")

        self.assertEqual(mock_send.await_count, 3)
        self.assertEqual(mock_send.call_args.args[1].messages, [{"role": "user", "content": "one more"}])

    def test_ping(self):
        with self.client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "ping"})
            self.assertEqual(ws.receive_json()["type"], "pong")


class OutboxPumpTests(unittest.IsolatedAsyncioTestCase):
    async def test_drains_queue_then_stops_on_sentinel(self):
        ws = MagicMock()
        ws.send_json = AsyncMock()
        outbox: asyncio.Queue = asyncio.Queue()
        for event in ({"type": "token", "token": "a"}, {"type": "complete", "content": "a"}, None):
            outbox.put_nowait(event)

        await asyncio.wait_for(chat_ws._pump(ws, outbox), timeout=5)

        self.assertEqual([c.args[0]["type"] for c in ws.send_json.await_args_list], ["token", "complete"])

    async def test_stops_when_socket_is_gone(self):
        ws = MagicMock()
        ws.send_json = AsyncMock(side_effect=WebSocketDisconnect(1006))
        outbox: asyncio.Queue = asyncio.Queue()
        outbox.put_nowait({"type": "token", "token": "a"})
        outbox.put_nowait({"type": "token", "token": "b"})

        await asyncio.wait_for(chat_ws._pump(ws, outbox), timeout=5)

        self.assertEqual(ws.send_json.await_count, 1)


if __name__ == "__main__":
    unittest.main()
