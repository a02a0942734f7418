#!/usr/bin/env python3
"""
Tools Package

This package contains the tool contract, the registry, and the built-in
tools for the Clarissa agent:

- base: Tool ABC, FunctionTool adapter, ToolDefinition
- registry: ToolRegistry (priority-aware limiting, validated dispatch)
- approval: ApprovalPolicy for tools that require user confirmation
- basic_tools: calculator, read_file, write_file, bash
- file_tools: list_directory, search_files, patch_file
- git_tools: git_status, git_diff, git_log, git_add, git_commit, git_branch
- web_fetch: fetch a URL as text
- memory_tool: MemoryStore plus the remember/forget tools
"""

from typing import Iterable, Optional

from .base import CORE, EXTENDED, FunctionTool, Tool, ToolDefinition
from .basic_tools import BashTool, CalculatorTool, ReadFileTool, WriteFileTool
from .file_tools import ListDirectoryTool, PatchFileTool, SearchFilesTool
from .git_tools import GIT_TOOL_CLASSES
from .memory_tool import ForgetTool, MemoryStore, RememberTool
from .registry import ToolRegistry
from .web_fetch import WebFetchTool

DEFAULT_TOOLS = (
    "calculator", "remember", "forget",
    "read_file", "write_file", "list_directory", "search_files", "patch_file",
    "bash", "web_fetch",
    "git_status", "git_diff", "git_log", "git_add", "git_commit", "git_branch",
)


def create_default_registry(
    memory_store: Optional[MemoryStore] = None,
    working_dir: Optional[str] = None,
    enabled: Optional[Iterable[str]] = None,
    disabled: Optional[Iterable[str]] = None,
) -> ToolRegistry:
    """Build a registry with the built-in tools.

    Args:
        memory_store: Store backing remember/forget. Those tools are skipped without one.
        working_dir: Root for the file and shell tools (defaults to cwd).
        enabled: Only register these tool names.
        disabled: Skip these tool names.
    """
    candidates = [CalculatorTool()]
    if memory_store is not None:
        candidates.extend([RememberTool(memory_store), ForgetTool(memory_store)])
    candidates.extend([
        ReadFileTool(working_dir),
        WriteFileTool(working_dir),
        ListDirectoryTool(working_dir),
        SearchFilesTool(working_dir),
        PatchFileTool(working_dir),
        BashTool(working_dir),
        WebFetchTool(),
    ])
    candidates.extend(tool_class(working_dir) for tool_class in GIT_TOOL_CLASSES)

    enabled_set = set(enabled) if enabled else None
    disabled_set = set(disabled or ())
    registry = ToolRegistry()
    for tool in candidates:
        if enabled_set is not None and tool.name not in enabled_set:
            continue
        if tool.name in disabled_set:
            continue
        available, _reason = tool.is_available()
        if available:
            registry.register(tool)
    return registry


__all__ = [
    "CORE",
    "EXTENDED",
    "DEFAULT_TOOLS",
    "BashTool",
    "CalculatorTool",
    "ForgetTool",
    "FunctionTool",
    "ListDirectoryTool",
    "MemoryStore",
    "PatchFileTool",
    "ReadFileTool",
    "RememberTool",
    "SearchFilesTool",
    "Tool",
    "ToolDefinition",
    "ToolRegistry",
    "WebFetchTool",
    "WriteFileTool",
    "create_default_registry",
]
