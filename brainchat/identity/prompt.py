# prompt.py — Build the chat system prompt
#
# Assembles the system prompt from four parts:
#   1. Role + directory guide (static)
#   2. Full text of every loaded file
#   3. Available files, grouped by folder with the newest examples
#   4. Tool usage notes, only for tools that are actually enabled
#
# The prompt is rebuilt for every turn so it reflects the current file set.

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from brainchat.knowledge.discovery import extract_date_from_path, flatten_file_tree

EXAMPLES_PER_FOLDER = 3

_TOOL_NOTES = {
    "enable_web_search": (
        "**Web Search**: You MUST use this tool immediately when the user asks about news, current "
        "events, recent information, or anything that requires up-to-date data. DO NOT ask permission "
        'or offer to search - just search. DO NOT say "I could search" - just do it.'
    ),
    "enable_web_fetch": (
        "**URL Fetch**: You can fetch and read content from URLs. Use this when the user provides a "
        "URL or asks you to read a webpage."
    ),
    "enable_code_execution": (
        "**Code Execution**: You can write and execute Python code in a sandbox. Use this for "
        "calculations, data analysis, or when the user asks you to run code."
    ),
}

_PREAMBLE = """You are a helpful assistant with access to the user's brain repository - a personal knowledge management system.

## Your Role
- Help the user understand and work with their notes, research, and documentation
- Reference specific files when answering questions
- Quote relevant sections from loaded files

## Directory Guide - WHERE TO FIND THINGS
- **todo/** - Tasks and action items
- **projects/** - Project notes and plans
- **customers/** - Customer/client information and notes
- **content/** - Posts, videos, course content (OUTPUT)
- **context/** - Business docs, ideas, strategy guides
- **research/** - Newsletters and YouTube transcripts (INPUT)
  - research/newsletters/INDEX.md - master index for all newsletters
  - research/youtube/INDEX.md - master index for all YouTube transcripts
  - Subfolders: indy/, lenny/, ethan/, simon/, etc. (no INDEX.md in subfolders)
- **.claude/skills/** - Available automation skills
- **.claude/commands/** - Slash commands

**NOTE**: INDEX.md files are only at research/newsletters/ and research/youtube/ level, NOT in individual source subfolders."""

_RULES = """## File Loading Rules
You have a `load_file` tool to read files from the user's brain.

**IMPORTANT: If files are already loaded above, USE THEM to answer the question. Don't ask for INDEX.md or offer choices - just answer based on the loaded content.**

**Only use INDEX.md workflow when NO relevant files are loaded:**
1. For research/newsletters/ or research/youtube/ -> load the INDEX.md at that level
2. INDEX.md files show all available content with dates and titles
3. Then offer the user choices

**DATE FORMAT**: YYYYMMDD (20251118 = Nov 18, 2025). Higher = more recent.

## Guidelines
- Be concise and direct
- Reference file paths when citing information
- Use the load_file tool to read files you need - don't ask the user to load them
- If the user wants to save something, help them format it as markdown for their !inbox folder
- Don't make up information that isn't in the loaded files"""


def _attr(item: Any, name: str) -> Any:
    return item[name] if isinstance(item, dict) else getattr(item, name)


def build_directory_listing(file_tree: list[dict[str, Any]]) -> str:
    """Folder-by-folder listing with file counts and the newest examples."""
    grouped: dict[str, list[str]] = {}
    for path in flatten_file_tree(file_tree):
        folder, _, _ = path.rpartition("/")
        grouped.setdefault(folder or "(root)", []).append(path)

    lines: list[str] = []
    for folder in sorted(grouped):
        paths = sorted(grouped[folder], key=extract_date_from_path, reverse=True)
        lines.append(f"\n**{folder}/** ({len(paths)} files)")
        for path in paths[:EXAMPLES_PER_FOLDER]:
            lines.append(f"  - {path.rsplit('/', 1)[-1]}")
        if len(paths) > EXAMPLES_PER_FOLDER:
            lines.append(f"  - ... {len(paths) - EXAMPLES_PER_FOLDER} more")
    return "\n".join(lines)


def build_tools_section(tool_options: Any = None) -> str:
    if tool_options is None:
        return ""
    enabled = [note for flag, note in _TOOL_NOTES.items() if getattr(tool_options, flag, False)]
    if not enabled:
        return ""
    bullets = "\n".join(f"- {note}" for note in enabled)
    return (
        "## Available Tools - USE THESE PROACTIVELY\n"
        "You have these tools enabled. When relevant, USE THEM IMMEDIATELY without asking:\n\n"
        f"{bullets}\n\n"
        "CRITICAL: When a user asks a question that these tools can answer, USE THE TOOL IMMEDIATELY. "
        'Do not offer to use it, do not ask permission, do not say "I could" - just use it. '
        "The user enabled these tools because they want you to use them."
    )


def build_system_prompt(
    files: Iterable[Any],
    file_tree: list[dict[str, Any]] | None = None,
    tool_options: Any = None,
) -> str:
    """Assemble the full system prompt.

    `files` holds LoadedFile objects or {path, content} dicts. `tool_options`
    is anything with enable_web_search / enable_web_fetch / enable_code_execution
    attributes, already gated by what the active provider supports.
    """
    file_contents = "\n\n".join(
        f"### {_attr(f, 'path')}\n```\n{_attr(f, 'content')}\n```" for f in files
    )

    parts = [
        _PREAMBLE,
        "## Loaded Files\n"
        "The following files from the user's brain are currently loaded and you can read their contents:\n\n"
        + (file_contents or "(No files loaded yet)"),
    ]

    if file_tree:
        parts.append(
            "## Available Files (organized by folder)\n"
            "When loading a file, use the FULL PATH: folder + filename "
            "(e.g., `research/newsletters/ethan/20251118-filename.md`)\n"
            + build_directory_listing(file_tree)
        )

    tools_section = build_tools_section(tool_options)
    if tools_section:
        parts.append(tools_section)

    parts.append(_RULES)
    return "\n\n".join(parts)
