# discovery.py — Find brain files relevant to a question
#
# Conservative on purpose: only known source names (people, newsletters,
# channels, top-level folders) map to folders. A question that names none
# of them loads nothing.

from __future__ import annotations

import re
from typing import Any

_DATE_PATTERN = re.compile(r"(\d{8})")

_RECENCY_WORDS = ("recent", "latest", "newest", "most recent", "last")

# Alias (lowercase) -> folder prefixes
KNOWN_SOURCES: dict[str, list[str]] = {
    # YouTube channels
    "indy dev dan": ["research/youtube/indy"],
    "indy": ["research/youtube/indy"],
    "lenny": ["research/youtube/lenny"],
    "lenny rachitsky": ["research/youtube/lenny"],
    "lenny's podcast": ["research/youtube/lenny"],
    "anthropic": ["research/youtube/anthropic"],
    "no priors": ["research/youtube/nopriors"],
    "nopriors": ["research/youtube/nopriors"],
    "this day in ai": ["research/youtube/thisday"],
    "thisday": ["research/youtube/thisday"],
    "ai engineer": ["research/youtube/aie"],
    "aie": ["research/youtube/aie"],

    # Newsletter authors
    "ethan": ["research/newsletters/ethan"],
    "ethan mollick": ["research/newsletters/ethan"],
    "one useful thing": ["research/newsletters/ethan"],
    "simon": ["research/newsletters/simon"],
    "simon willison": ["research/newsletters/simon"],
    "avinash": ["research/newsletters/avinash"],
    "avinash kaushik": ["research/newsletters/avinash"],
    "sam": ["research/newsletters/sam"],
    "sam tomlinson": ["research/newsletters/sam"],
    "ben": ["research/newsletters/ben"],
    "ben tossell": ["research/newsletters/ben"],
    "ben's bites": ["research/newsletters/ben"],
    "exponential": ["research/newsletters/exponential"],
    "exponential view": ["research/newsletters/exponential"],
    "azeem": ["research/newsletters/exponential"],
    "dan shipper": ["research/newsletters/every"],
    "every newsletter": ["research/newsletters/every"],

    # Folder shortcuts
    "newsletter": ["research/newsletters"],
    "newsletters": ["research/newsletters"],
    "youtube": ["research/youtube"],
    "research": ["research"],
    "todo": ["todo"],
    "todos": ["todo"],
    "projects": ["projects"],
    "customers": ["customers"],
    "travel": ["travel"],
}


def extract_date_from_path(path: str) -> int:
    """YYYYMMDD found anywhere in the path as an int, or 0 when absent."""
    match = _DATE_PATTERN.search(path)
    return int(match.group(1)) if match else 0


def flatten_file_tree(nodes: list[dict[str, Any]], paths: list[str] | None = None) -> list[str]:
    """All markdown file paths in a nested {name, path, type, children} tree."""
    if paths is None:
        paths = []
    for node in nodes:
        if node.get("type") == "file" and node.get("name", "").endswith(".md"):
            paths.append(node["path"])
        if node.get("type") == "dir" and node.get("children"):
            flatten_file_tree(node["children"], paths)
    return paths


def extract_keywords(query: str) -> list[str]:
    """Folder prefixes for every known source the query mentions."""
    query_lower = query.lower()
    matched: list[str] = []
    for phrase, folders in KNOWN_SOURCES.items():
        if phrase in query_lower:
            for folder in folders:
                if folder not in matched:
                    matched.append(folder)
    return matched


def _files_under(nodes: list[dict[str, Any]], prefixes: list[str], matches: list[str]) -> list[str]:
    lowered = [p.lower() for p in prefixes]
    for node in nodes:
        path_lower = node.get("path", "").lower()
        if any(path_lower.startswith(prefix) for prefix in lowered):
            if node.get("type") == "file" and node.get("name", "").endswith(".md"):
                matches.append(node["path"])
        if node.get("type") == "dir" and node.get("children"):
            _files_under(node["children"], prefixes, matches)
    return matches


def wants_recent(query: str) -> bool:
    query_lower = query.lower()
    return any(word in query_lower for word in _RECENCY_WORDS)


def find_relevant_files(query: str, tree: list[dict[str, Any]], max_files: int = 5) -> list[str]:
    """Rank files under the folders a query names.

    Score is the number of matched folder prefixes contained in the path.
    Recency questions sort newest first, then by score; everything else
    sorts by score, then newest first.
    """
    keywords = extract_keywords(query)
    if not keywords:
        return []

    scored = []
    for path in _files_under(tree, keywords, []):
        path_lower = path.lower()
        score = sum(1 for keyword in keywords if keyword in path_lower)
        scored.append((path, score, extract_date_from_path(path)))

    if wants_recent(query):
        scored.sort(key=lambda item: (item[2], item[1]), reverse=True)
    else:
        scored.sort(key=lambda item: (item[1], item[2]), reverse=True)

    return [path for path, _, _ in scored[:max_files]]
