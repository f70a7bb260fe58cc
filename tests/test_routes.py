# test_routes.py — Tests for the REST API routes
#
# Uses FastAPI's TestClient (no real server needed).
# In-memory SQLite for preferences, a MagicMock standing in for the repository.
#
# Run: python -m pytest tests/test_routes.py

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from brainchat.api import routes
from brainchat.api.routes import api_router, init_api
from brainchat.db import session as db_session
from brainchat.db.repository import PreferenceStore
from brainchat.engine.types import KeyValidationResult
from brainchat.knowledge.github import GitHubError

app = FastAPI()
app.include_router(api_router, prefix="/api")


class RoutesTestCase(unittest.TestCase):
    def setUp(self) -> None:
        db_session.configure("sqlite://")
        db_session.init_db()
        self.store = PreferenceStore()
        self.repository = MagicMock()
        init_api(self.store, self.repository)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        routes._store = None
        routes._repository = None


class ProviderRouteTests(RoutesTestCase):
    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")
        self.assertEqual(resp.json()["provider"], "anthropic")

    def test_list_providers(self):
        self.store.set_api_key("gemini", "AIzaKey")
        data = self.client.get("/api/providers").json()

        self.assertEqual([p["id"] for p in data], ["anthropic", "openai", "gemini"])
        gemini = data[2]
        self.assertTrue(gemini["has_key"])
        self.assertTrue(gemini["is_active"])
        self.assertEqual(gemini["selected_model"], "gemini-3-flash-preview")
        self.assertEqual(len(gemini["models"]), 2)
        self.assertNotIn("storage_key", gemini)

    @patch("brainchat.engine.providers.validate_key", new_callable=AsyncMock)
    def test_store_valid_key(self, mock_validate):
        mock_validate.return_value = KeyValidationResult(valid=True)

        resp = self.client.put("/api/providers/openai/key", json={"key": "  sk-proj-abc  "})

        self.assertEqual(resp.status_code, 200)
        mock_validate.assert_awaited_once_with("openai", "sk-proj-abc")
        self.assertEqual(self.store.get_api_key("openai"), "sk-proj-abc")

    @patch("brainchat.engine.providers.validate_key", new_callable=AsyncMock)
    def test_bad_format_skips_vendor_check(self, mock_validate):
        resp = self.client.put("/api/providers/anthropic/key", json={"key": "sk-wrong"})

        self.assertEqual(resp.status_code, 400)
        self.assertIn("sk-ant-", resp.json()["detail"])
        mock_validate.assert_not_awaited()

    @patch("brainchat.engine.providers.validate_key", new_callable=AsyncMock)
    def test_rejected_key_not_stored(self, mock_validate):
        mock_validate.return_value = KeyValidationResult(valid=False, error="Invalid API key")

        resp = self.client.put("/api/providers/anthropic/key", json={"key": "sk-ant-nope"})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "Invalid API key")
        self.assertFalse(self.store.has_api_key("anthropic"))

    def test_clear_key(self):
        self.store.set_api_key("openai", "sk-1")
        resp = self.client.delete("/api/providers/openai/key")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(self.store.has_api_key("openai"))

    def test_switch_requires_key(self):
        resp = self.client.put("/api/providers/active", json={"provider": "openai"})
        self.assertEqual(resp.status_code, 400)

        self.store.set_api_key("openai", "sk-1")
        resp = self.client.put("/api/providers/active", json={"provider": "openai"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.store.get_active_provider(), "openai")

    def test_unknown_provider(self):
        self.assertEqual(self.client.delete("/api/providers/mistral/key").status_code, 404)

    def test_select_model(self):
        resp = self.client.put("/api/providers/anthropic/model", json={"model_id": "claude-sonnet-4-5-20250929"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.store.get_selected_model("anthropic"), "claude-sonnet-4-5-20250929")

        resp = self.client.put("/api/providers/anthropic/model", json={"model_id": "gpt-5-mini"})
        self.assertEqual(resp.status_code, 400)

    def test_tools(self):
        self.assertEqual(
            self.client.get("/api/tools").json(),
            {"web_search": False, "web_fetch": False, "code_execution": False},
        )
        resp = self.client.put("/api/tools", json={"web_search": True})
        self.assertEqual(resp.json()["web_search"], True)
        self.assertEqual(self.client.put("/api/tools", json={"teleport": True}).status_code, 400)

    def test_tool_toggles_must_be_booleans(self):
        resp = self.client.put("/api/tools", json={"web_search": "false"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("web_search", resp.json()["detail"])
        self.assertFalse(self.store.get_tool_enabled("web_search"))

    @patch("brainchat.engine.providers.get_models")
    def test_models_listed_through_router(self, mock_models):
        mock_models.return_value = []
        data = self.client.get("/api/providers").json()
        self.assertEqual([p["models"] for p in data], [[], [], []])
        resp = self.client.put("/api/providers/anthropic/model", json={"model_id": "claude-sonnet-4-5-20250929"})
        self.assertEqual(resp.status_code, 400)


class RepositoryRouteTests(RoutesTestCase):
    def test_file_tree(self):
        self.repository.get_file_tree.return_value = [{"name": "a.md", "path": "a.md", "type": "file"}]
        resp = self.client.get("/api/files")
        self.assertEqual(resp.json(), {"tree": [{"name": "a.md", "path": "a.md", "type": "file"}]})

    def test_load_files_adds_token_estimates(self):
        self.repository.load_file_contents.return_value = [{"path": "a.md", "content": "x" * 10}]
        resp = self.client.post("/api/files", json={"paths": ["a.md"]})
        self.assertEqual(resp.json()["files"], [{"path": "a.md", "content": "x" * 10, "token_estimate": 3}])
        self.assertEqual(resp.json()["context"], {
            "total_tokens": 3,
            "is_over_limit": False,
            "is_warning": False,
            "message": "3 tokens loaded",
        })

    def test_load_files_requires_paths(self):
        self.assertEqual(self.client.post("/api/files", json={"paths": []}).status_code, 400)

    def test_save_note(self):
        self.repository.save_note.return_value = "!inbox/20251201-0900-note.md"
        resp = self.client.post("/api/notes", json={"content": "idea", "timezone": "Europe/Paris"})
        self.assertEqual(resp.json(), {"success": True, "path": "!inbox/20251201-0900-note.md"})
        self.repository.save_note.assert_called_once_with("idea", "Europe/Paris")

    def test_github_errors_become_http_errors(self):
        self.repository.list_folders.side_effect = GitHubError("Repository not found", 404)
        resp = self.client.get("/api/folders")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"], "Repository not found")

    def test_not_connected(self):
        init_api(self.store, None)
        self.assertEqual(self.client.get("/api/files").status_code, 401)


if __name__ == "__main__":
    unittest.main()
