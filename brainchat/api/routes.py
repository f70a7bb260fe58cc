# routes.py — REST API for the chat frontend
#
# Settings (providers, keys, models, tool toggles) and brain repository
# access. Chat turns stream over the WebSocket instead (see websocket.py).
#
# Mount: app.include_router(api_router, prefix="/api")
#
# Endpoints:
#   GET    /api/health                      — Health + active provider
#   GET    /api/providers                   — Providers with key/active status and models
#   PUT    /api/providers/active            — Switch provider (must have a key)
#   PUT    /api/providers/:provider/key     — Validate and store an API key
#   DELETE /api/providers/:provider/key     — Forget an API key
#   PUT    /api/providers/:provider/model   — Select a model
#   GET    /api/tools                       — Tool toggles
#   PUT    /api/tools                       — Update tool toggles
#   GET    /api/files                       — Repository file tree
#   POST   /api/files                       — File contents (with token estimates)
#   GET    /api/repos                       — Repositories the token can see
#   GET    /api/folders                     — Folders at a repository path
#   POST   /api/notes                       — Capture a note into the inbox

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from brainchat.db.repository import TOOL_KEYS, PreferenceStore
from brainchat.engine import providers
from brainchat.engine.config import PROVIDERS, validate_key_format
from brainchat.knowledge.github import GitHubError, GitHubRepository
from brainchat.messaging.conversation import LoadedFile, context_status

logger = logging.getLogger(__name__)

api_router = APIRouter()

# These get set by server.py at startup
_store: PreferenceStore | None = None
_repository: GitHubRepository | None = None


def init_api(
    store: PreferenceStore,
    repository: GitHubRepository | None = None,
) -> None:
    """Wire up the API with runtime references."""
    global _store, _repository
    _store = store
    _repository = repository


def _require_store() -> PreferenceStore:
    if _store is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return _store


def _require_repository() -> GitHubRepository:
    if _repository is None:
        raise HTTPException(status_code=401, detail="GitHub not connected")
    return _repository


def _require_provider(provider: str) -> str:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")
    return provider


async def _github(func, *args: Any) -> Any:
    """Run a blocking repository call off the loop; GitHub errors become HTTP errors."""
    try:
        return await asyncio.to_thread(func, *args)
    except GitHubError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message) from exc


# ===================================================================
# Providers
# ===================================================================

@api_router.get("/providers")
async def list_providers():
    store = _require_store()
    result = []
    for status in store.get_providers_with_status():
        config = status["config"]
        result.append({
            "id": config.id,
            "name": config.name,
            "placeholder": config.placeholder,
            "console_url": config.console_url,
            "usage_url": config.usage_url,
            "help_text": config.help_text,
            "supports_web_search": config.supports_web_search,
            "supports_code_execution": config.supports_code_execution,
            "has_key": status["has_key"],
            "is_active": status["is_active"],
            "selected_model": store.get_selected_model(config.id),
            "models": [
                {"id": m.id, "display_name": m.display_name, "tier": m.tier}
                for m in providers.get_models(config.id)
            ],
        })
    return result


@api_router.put("/providers/active")
async def set_active_provider(body: dict[str, Any]):
    store = _require_store()
    provider = _require_provider(body.get("provider", ""))
    if not store.set_active_provider(provider):
        raise HTTPException(status_code=400, detail=f"No API key stored for {PROVIDERS[provider].name}")
    return {"active": provider}


@api_router.put("/providers/{provider}/key")
async def set_api_key(provider: str, body: dict[str, Any]):
    store = _require_store()
    provider = _require_provider(provider)
    key = (body.get("key") or "").strip()
    config = PROVIDERS[provider]

    if not key:
        raise HTTPException(status_code=400, detail="Please enter an API key")
    if not validate_key_format(key, provider):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid key format. {config.name} keys start with {config.key_prefix}",
        )

    result = await providers.validate_key(provider, key)
    if not result.valid:
        raise HTTPException(status_code=400, detail=result.error or "Invalid API key")

    store.set_api_key(provider, key)
    logger.info("Stored API key for %s", provider)
    return {"provider": provider, "valid": True}


@api_router.delete("/providers/{provider}/key")
async def clear_api_key(provider: str):
    store = _require_store()
    provider = _require_provider(provider)
    store.clear_api_key(provider)
    return {"provider": provider, "has_key": False}


@api_router.put("/providers/{provider}/model")
async def set_model(provider: str, body: dict[str, Any]):
    store = _require_store()
    provider = _require_provider(provider)
    model_id = body.get("model_id", "")
    if not any(m.id == model_id for m in providers.get_models(provider)):
        raise HTTPException(status_code=400, detail=f"Model {model_id!r} is not a {PROVIDERS[provider].name} model")
    store.set_selected_model(provider, model_id)
    return {"provider": provider, "model_id": model_id}


# ===================================================================
# Tools
# ===================================================================

@api_router.get("/tools")
async def get_tools():
    store = _require_store()
    return {tool: store.get_tool_enabled(tool) for tool in TOOL_KEYS}


@api_router.put("/tools")
async def set_tools(body: dict[str, Any]):
    store = _require_store()
    unknown = set(body) - set(TOOL_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown tools: {', '.join(sorted(unknown))}")
    not_bool = sorted(tool for tool, enabled in body.items() if not isinstance(enabled, bool))
    if not_bool:
        raise HTTPException(status_code=400, detail=f"Tool toggles must be true or false: {', '.join(not_bool)}")
    for tool, enabled in body.items():
        store.set_tool_enabled(tool, enabled)
    return {tool: store.get_tool_enabled(tool) for tool in TOOL_KEYS}


# ===================================================================
# Brain repository
# ===================================================================

@api_router.get("/files")
async def get_file_tree():
    repository = _require_repository()
    return {"tree": await _github(repository.get_file_tree)}


@api_router.post("/files")
async def load_files(body: dict[str, Any]):
    repository = _require_repository()
    paths = body.get("paths")
    if not paths or not isinstance(paths, list):
        raise HTTPException(status_code=400, detail="No file paths provided")

    files = [
        LoadedFile.from_content(f["path"], f["content"])
        for f in await _github(repository.load_file_contents, paths)
    ]
    return {
        "files": [asdict(f) for f in files],
        "context": asdict(context_status(files)),
    }


@api_router.get("/repos")
async def list_repos():
    repository = _require_repository()
    return {"repos": await _github(repository.list_repos)}


@api_router.get("/folders")
async def list_folders(path: str = Query("", description="Folder path inside the repository")):
    repository = _require_repository()
    return {"folders": await _github(repository.list_folders, path)}


@api_router.post("/notes")
async def save_note(body: dict[str, Any]):
    repository = _require_repository()
    content = body.get("content")
    if not isinstance(content, str) or not content.strip():
        raise HTTPException(status_code=400, detail="No content provided")

    path = await _github(repository.save_note, content, body.get("timezone") or "UTC")
    return {"success": True, "path": path}


# ===================================================================
# Health
# ===================================================================

@api_router.get("/health")
async def api_health():
    return {
        "status": "ok",
        "provider": _store.get_active_provider() if _store else None,
        "github": _repository is not None,
        "time": datetime.now().isoformat(),
    }
