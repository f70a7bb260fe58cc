# server.py — brainchat's entry point
#
# Serves the settings/files REST API and the streaming chat WebSocket.
# On startup: creates tables, runs the one-time preference migration,
# and connects the brain repository when a GitHub token is configured.
#
# Usage:
#   brainchat                      # host/port from BRAINCHAT_HOST / BRAINCHAT_PORT
#   python -m brainchat.server

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI

from brainchat.api.routes import api_router, init_api
from brainchat.api.websocket import init_chat, ws_router
from brainchat.db.repository import PreferenceStore
from brainchat.db.session import init_db
from brainchat.engine.config import GITHUB_REPO, GITHUB_TOKEN, INBOX_PATH
from brainchat.engine.engine import ChatEngine
from brainchat.knowledge.github import GitHubRepository

logger = logging.getLogger(__name__)


def setup() -> None:
    """Initialize storage and wire the API and chat socket."""
    init_db()
    store = PreferenceStore()
    store.run_migration()

    repository = None
    if GITHUB_TOKEN and GITHUB_REPO:
        repository = GitHubRepository(GITHUB_TOKEN, GITHUB_REPO, inbox_path=INBOX_PATH)
        engine = ChatEngine.from_repository(store, repository)
        logger.info("Brain repository: %s (inbox %s)", GITHUB_REPO, INBOX_PATH)
    else:
        engine = ChatEngine(store)
        logger.warning("BRAINCHAT_GITHUB_TOKEN / BRAINCHAT_GITHUB_REPO not set; file tools disabled")

    init_api(store, repository)
    init_chat(engine, store)
    logger.info("Active provider: %s", store.get_active_provider())


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup()
    yield


app = FastAPI(title="brainchat", lifespan=lifespan)
app.include_router(api_router, prefix="/api")
app.include_router(ws_router)


@app.get("/health")
async def health():
    return {"status": "ok", "time": datetime.now().isoformat()}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    logging.basicConfig(
        level=os.getenv("BRAINCHAT_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.getenv("BRAINCHAT_HOST", "127.0.0.1")
    port = int(os.getenv("BRAINCHAT_PORT", "8000"))

    print("\nbrainchat is live.")
    print(f"  API:        http://{host}:{port}/api/health")
    print(f"  WebSocket:  ws://{host}:{port}/ws/chat")
    print("\n  Press Ctrl+C to stop.\n")

    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    main()
