# github.py — GitHub REST wrapper for the brain repository
#
# Reads the repo tree and file contents for the chat, lists repos/folders
# for settings, and commits captured notes into the inbox folder.
# Docs: https://docs.github.com/en/rest
#
# Calls are blocking (requests). Async callers go through asyncio.to_thread.

from __future__ import annotations

import base64
import logging
import time
from datetime import datetime, timezone as dt_timezone
from typing import Any
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
API_VERSION = "2022-11-28"
MAX_FILE_SIZE = 100 * 1024
DEFAULT_BRANCHES = ("main", "master")


class GitHubError(Exception):
    """A GitHub call failed. `status` is the HTTP status to surface."""

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


class GitHubRepository:
    def __init__(self, token: str, repo: str, inbox_path: str = "!inbox", timeout: float = 30):
        if not token:
            raise GitHubError("GitHub not connected", 401)
        self.token = token
        self.repo = repo
        self.inbox_path = inbox_path or "!inbox"
        self.timeout = timeout
        self._full_name: str | None = repo if "/" in repo else None

    # -----------------------------------------------------------------------
    # HTTP plumbing
    # -----------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        return requests.request(
            method, f"{API_BASE}{path}", headers=headers, timeout=self.timeout, **kwargs,
        )

    @property
    def full_name(self) -> str:
        """owner/name. A bare repo name belongs to the token's user."""
        if self._full_name is None:
            if not self.repo:
                raise GitHubError("No repository selected. Please select a repository in settings.", 400)
            resp = self._request("GET", "/user")
            if not resp.ok:
                raise GitHubError("GitHub session expired. Please reconnect.", 401)
            self._full_name = f"{resp.json()['login']}/{self.repo}"
        return self._full_name

    def _contents_path(self, path: str) -> str:
        return f"/repos/{self.full_name}/contents/{quote(path, safe='/')}"

    # -----------------------------------------------------------------------
    # Reading
    # -----------------------------------------------------------------------

    def get_file_tree(self) -> list[dict[str, Any]]:
        """Whole repo as nested {name, path, type, children} nodes, dirs first."""
        for branch in DEFAULT_BRANCHES:
            resp = self._request("GET", f"/repos/{self.full_name}/git/trees/{branch}?recursive=1")
            if resp.ok:
                return build_tree(resp.json().get("tree", []))
            logger.debug("No tree on branch %s (%s)", branch, resp.status_code)
        raise GitHubError("Could not fetch repository tree", 500)

    def load_file_contents(self, paths: list[str]) -> list[dict[str, str]]:
        """Contents per path. Failures become marker text, never exceptions."""
        return [self._load_one(path) for path in paths]

    def _load_one(self, path: str) -> dict[str, str]:
        try:
            resp = self._request("GET", self._contents_path(path))
            if not resp.ok:
                return {"path": path, "content": f"[Error loading file: {resp.status_code}]"}

            data = resp.json()
            size = data.get("size", 0)
            if size > MAX_FILE_SIZE:
                return {
                    "path": path,
                    "content": f"[File too large: {round(size / 1024)}KB, max {MAX_FILE_SIZE // 1024}KB]",
                }

            content = base64.b64decode(data.get("content", "")).decode("utf-8", errors="replace")
            return {"path": path, "content": content}
        except (requests.RequestException, ValueError) as exc:
            logger.exception("Failed to load %s", path)
            return {"path": path, "content": f"[Error: {exc}]"}

    def list_repos(self) -> list[dict[str, Any]]:
        resp = self._request(
            "GET",
            "/user/repos?per_page=100&sort=updated&affiliation=owner,collaborator&visibility=all",
        )
        if not resp.ok:
            raise GitHubError("Failed to fetch repos", 500)
        return [
            {"name": r["name"], "full_name": r["full_name"], "private": r["private"]}
            for r in resp.json()
        ]

    def list_folders(self, path: str = "") -> list[dict[str, str]]:
        """Directories under `path`; the inbox and other ! folders sort first."""
        resp = self._request("GET", self._contents_path(path).rstrip("/"))
        if resp.status_code == 404:
            raise GitHubError("Repository not found", 404)
        if not resp.ok:
            raise GitHubError("Failed to fetch repository contents", 500)

        folders = [
            {"name": item["name"], "path": item["path"]}
            for item in resp.json()
            if item.get("type") == "dir"
        ]

        def sort_key(folder: dict[str, str]) -> tuple[int, str]:
            name = folder["name"]
            if name == "!inbox":
                return (0, name)
            return (1 if name.startswith("!") else 2, name.lower())

        return sorted(folders, key=sort_key)

    # -----------------------------------------------------------------------
    # Writing
    # -----------------------------------------------------------------------

    def save_note(self, content: str, timezone: str = "UTC") -> str:
        """Commit a note into the inbox folder. Returns the path written."""
        if not content or not content.strip():
            raise GitHubError("No content provided", 400)

        now = datetime.now(dt_timezone.utc)
        try:
            local = now.astimezone(ZoneInfo(timezone or "UTC"))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using UTC", timezone)
            local = now

        stamp = local.strftime("%Y%m%d-%H%M")
        note = f"{content.strip()}\n\n---\n*Captured via Brain Inbox - {local:%Y-%m-%d %H:%M}*\n"
        commit_message = f"Inbox capture: {now:%Y-%m-%d %H:%M}"

        repo_resp = self._request("GET", f"/repos/{self.full_name}")
        if repo_resp.status_code == 404:
            raise GitHubError(
                f'Repository "{self.full_name}" not found. Please select a different repository.', 404,
            )
        if not repo_resp.ok:
            raise GitHubError(f"Cannot access repo: {_error_message(repo_resp)}", 403)

        self._ensure_inbox()

        path = f"{self.inbox_path}/{stamp}-note.md"
        resp = self._put_file(path, note, commit_message)
        if resp.ok:
            return path

        # 422: a file with this name already exists
        if resp.status_code == 422:
            path = f"{self.inbox_path}/{stamp}-voice-{int(time.time())}.md"
            retry = self._put_file(path, note, commit_message)
            if retry.ok:
                return path
            raise GitHubError("Failed to save to GitHub", 500)

        raise GitHubError(f"GitHub: {_error_message(resp)}", 500)

    def _ensure_inbox(self) -> None:
        resp = self._request("GET", self._contents_path(self.inbox_path))
        if resp.status_code != 404:
            return
        logger.info("Creating inbox folder %s", self.inbox_path)
        created = self._put_file(f"{self.inbox_path}/.gitkeep", "", "Create inbox folder")
        if not created.ok:
            raise GitHubError(f"Could not create inbox folder: {_error_message(created)}", 500)

    def _put_file(self, path: str, text: str, message: str) -> requests.Response:
        payload = {
            "message": message,
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
        }
        return self._request("PUT", self._contents_path(path), json=payload)


# ---------------------------------------------------------------------------
# Tree building
# ---------------------------------------------------------------------------

def build_tree(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Nest flat git tree entries (blob/tree) under their parent directories."""
    entries = [i for i in items if i.get("type") in ("blob", "tree")]
    entries.sort(key=lambda i: (i["type"] != "tree", i["path"]))

    root: list[dict[str, Any]] = []
    dirs: dict[str, dict[str, Any]] = {}
    for item in entries:
        parent_path, _, name = item["path"].rpartition("/")
        if item["type"] == "tree":
            node = {"name": name, "path": item["path"], "type": "dir", "children": []}
            dirs[item["path"]] = node
        else:
            node = {"name": name, "path": item["path"], "type": "file"}

        if not parent_path:
            root.append(node)
        elif parent_path in dirs:
            dirs[parent_path]["children"].append(node)
    return root


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json().get("message") or str(resp.status_code)
    except ValueError:
        return str(resp.status_code)
