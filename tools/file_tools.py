"""
File navigation and editing tools.

- ListDirectoryTool: Tree view of a directory, depth-limited
- SearchFilesTool: grep-style regex search across files
- PatchFileTool: Replace one exact occurrence of a string in a file (needs confirmation)

Paths are resolved inside the working directory with ``resolve_within`` and
the filesystem work runs in a worker thread.
"""

import asyncio
import fnmatch
import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from tools.base import CORE, EXTENDED, Tool
from tools.basic_tools import resolve_within

IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build", ".next", "__pycache__"})
BINARY_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".ico", ".woff", ".woff2", ".ttf", ".eot"})

MAX_PATTERN_LENGTH = 500
MAX_SEARCH_FILE_SIZE = 1024 * 1024
MAX_MATCH_CHARS = 200

# Nested quantifiers such as (a+)+ and quantified alternations such as (a|b)*
_CATASTROPHIC_PATTERNS = (
    re.compile(r"\([^)]*[+*][^)]*\)[+*]"),
    re.compile(r"\([^|)]+\|[^|)]+\)[+*]"),
)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def compile_search_pattern(pattern: str, case_sensitive: bool = False) -> "re.Pattern[str]":
    """Compile a user regex, refusing long patterns and ones prone to catastrophic backtracking."""
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise ValueError(f"Invalid search pattern: too long (max {MAX_PATTERN_LENGTH} characters)")
    for dangerous in _CATASTROPHIC_PATTERNS:
        if dangerous.search(pattern):
            raise ValueError("Invalid search pattern: nested quantifiers are not allowed")
    try:
        return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        raise ValueError(f"Invalid search pattern: {e}") from e


def _display_path(base: Path, path: Path) -> str:
    relative = path.relative_to(base.resolve()).as_posix()
    return relative or "."


# ---------------------------------------------------------------------------
# list_directory
# ---------------------------------------------------------------------------

class ListDirectoryTool(Tool):
    name = "list_directory"
    description = (
        "List files and directories in a path as a tree with file sizes. "
        "Use this to explore the project structure."
    )
    priority = CORE

    class Arguments(BaseModel):
        path: str = Field(".", description="Directory to list, relative to the working directory")
        depth: int = Field(2, ge=1, le=5, description="Maximum depth to recurse (1-5)")
        show_hidden: bool = Field(False, description="Include entries starting with '.'")

    def __init__(self, working_dir: Optional[str] = None):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    def _walk(self, directory: Path, depth: int, show_hidden: bool, prefix: str, lines: List[str]) -> None:
        try:
            names = sorted(
                entry.name for entry in directory.iterdir()
                if (show_hidden or not entry.name.startswith(".")) and entry.name not in IGNORED_DIRS
            )
        except OSError:
            return
        for i, name in enumerate(names):
            last = i == len(names) - 1
            connector = "└── " if last else "├── "
            child = directory / name
            try:
                if child.is_dir():
                    lines.append(f"{prefix}{connector}{name}/")
                    if depth > 1:
                        self._walk(child, depth - 1, show_hidden, prefix + ("    " if last else "│   "), lines)
                else:
                    lines.append(f"{prefix}{connector}{name} ({format_size(child.stat().st_size)})")
            except OSError:
                lines.append(f"{prefix}{connector}{name} [error]")

    def _list(self, path: str, depth: int, show_hidden: bool) -> dict:
        resolved = resolve_within(self.working_dir, path)
        if not resolved.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        shown = _display_path(self.working_dir, resolved)
        lines = ["./" if shown == "." else f"{shown}/"]
        self._walk(resolved, depth, show_hidden, "", lines)
        return {"path": shown, "depth": depth, "tree": "\n".join(lines)}

    async def execute(self, args: "ListDirectoryTool.Arguments") -> dict:
        return await asyncio.to_thread(self._list, args.path, args.depth, args.show_hidden)


# ---------------------------------------------------------------------------
# search_files
# ---------------------------------------------------------------------------

class SearchFilesTool(Tool):
    name = "search_files"
    description = (
        "Search for a regex pattern across files in a directory. Returns matching "
        "lines as 'file:line: content'. Like grep, for the project."
    )
    priority = CORE

    class Arguments(BaseModel):
        pattern: str = Field(..., min_length=1, description="Regex pattern to search for")
        path: str = Field(".", description="Directory to search in, relative to the working directory")
        file_pattern: Optional[str] = Field(None, description="Glob filter on file names, e.g. '*.py'")
        max_results: int = Field(20, ge=1, le=100, description="Maximum matches to return (1-100)")
        case_sensitive: bool = Field(False, description="Case-sensitive search")

    def __init__(self, working_dir: Optional[str] = None):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    def _candidate_files(self, root: Path, file_pattern: Optional[str]):
        try:
            entries = sorted(root.iterdir(), key=lambda p: p.name)
        except OSError:
            return
        for entry in entries:
            if entry.name.startswith(".") or entry.name in IGNORED_DIRS:
                continue
            try:
                if entry.is_dir():
                    yield from self._candidate_files(entry, file_pattern)
                    continue
                if not entry.is_file():
                    continue
                if file_pattern and not fnmatch.fnmatch(entry.name, file_pattern):
                    continue
                if entry.suffix.lower() in BINARY_EXTENSIONS:
                    continue
                if entry.stat().st_size > MAX_SEARCH_FILE_SIZE:
                    continue
            except OSError:
                continue
            yield entry

    def _search(self, args: "SearchFilesTool.Arguments") -> dict:
        regex = compile_search_pattern(args.pattern, args.case_sensitive)
        root = resolve_within(self.working_dir, args.path)
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {args.path}")

        matches: List[str] = []
        for file_path in self._candidate_files(root, args.file_pattern):
            try:
                text = file_path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            shown = _display_path(self.working_dir, file_path)
            for number, line in enumerate(text.split("\n"), 1):
                if line and regex.search(line):
                    matches.append(f"{shown}:{number}: {line.strip()[:MAX_MATCH_CHARS]}")
                    if len(matches) >= args.max_results:
                        break
            if len(matches) >= args.max_results:
                break

        return {
            "pattern": args.pattern,
            "path": _display_path(self.working_dir, root),
            "match_count": len(matches),
            "truncated": len(matches) >= args.max_results,
            "matches": "\n".join(matches),
        }

    async def execute(self, args: "SearchFilesTool.Arguments") -> dict:
        return await asyncio.to_thread(self._search, args)


# ---------------------------------------------------------------------------
# patch_file
# ---------------------------------------------------------------------------

class PatchFileTool(Tool):
    """Targeted edit: the old string must occur exactly once."""

    name = "patch_file"
    description = (
        "Edit a file by replacing an exact string with new content. The old string "
        "must match exactly once, including whitespace."
    )
    priority = EXTENDED
    requires_confirmation = True

    class Arguments(BaseModel):
        path: str = Field(..., description="File to edit, relative to the working directory")
        old_str: str = Field(..., min_length=1, description="Exact text to replace")
        new_str: str = Field(..., description="Replacement text (empty to delete)")

    def __init__(self, working_dir: Optional[str] = None):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    def _patch(self, path: str, old_str: str, new_str: str) -> dict:
        resolved = resolve_within(self.working_dir, path)
        if not resolved.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        content = resolved.read_text(encoding="utf-8")

        occurrences = content.count(old_str)
        if occurrences == 0:
            raise ValueError(
                "String not found in file. The old string must match exactly, "
                "including whitespace and line endings."
            )
        if occurrences > 1:
            raise ValueError(
                f"Found {occurrences} occurrences of the string. Provide a more "
                "specific string that matches exactly once."
            )

        resolved.write_text(content.replace(old_str, new_str, 1), encoding="utf-8")

        removed = old_str.count("\n") + 1
        added = new_str.count("\n") + 1
        shown = _display_path(self.working_dir, resolved)
        return {
            "path": shown,
            "lines_removed": removed,
            "lines_added": added,
            "net_change": added - removed,
            "message": f"Patched {shown}: replaced {removed} line(s) with {added} line(s)",
        }

    async def execute(self, args: "PatchFileTool.Arguments") -> dict:
        return await asyncio.to_thread(self._patch, args.path, args.old_str, args.new_str)
