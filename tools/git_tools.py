"""
Git tools for the repository in the working directory.

Read-only:    git_status, git_diff, git_log
Mutating:     git_add, git_commit, git_branch (need confirmation)

Each tool shells out to the ``git`` binary with a fixed argument list and
raises with git's stderr when the command exits nonzero.
"""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from tools.base import EXTENDED, Tool
from tools.basic_tools import resolve_within

GIT_TIMEOUT = 30


def run_git(args: List[str], cwd: Path, timeout: int = GIT_TIMEOUT) -> Tuple[str, str, int]:
    """Run ``git <args>`` and return (stdout, stderr, returncode)."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return "", f"git timed out after {timeout} seconds", 1
    except FileNotFoundError:
        return "", "git not found", 1
    return result.stdout.strip(), result.stderr.strip(), result.returncode


class GitTool(Tool):
    """Shared plumbing: working directory, availability, error handling."""

    priority = EXTENDED

    def __init__(self, working_dir: Optional[str] = None):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()

    def is_available(self) -> Tuple[bool, Optional[str]]:
        if shutil.which("git") is None:
            return False, "git executable not found"
        return True, None

    def _checked_path(self, path: str) -> str:
        resolve_within(self.working_dir, path)
        return path

    async def _git(self, args: List[str], failure: str) -> str:
        stdout, stderr, code = await asyncio.to_thread(run_git, args, self.working_dir)
        if code != 0:
            raise RuntimeError(stderr or failure)
        return stdout


def _no_option(value: str, what: str) -> str:
    if value.startswith("-"):
        raise ValueError(f"{what} must not start with '-': {value}")
    return value


class GitStatusTool(GitTool):
    name = "git_status"
    description = "Show the working tree status: staged, unstaged, and untracked files."

    class Arguments(BaseModel):
        short: bool = Field(False, description="Use short format output")

    async def execute(self, args: "GitStatusTool.Arguments") -> dict:
        command = ["status"] + (["--short"] if args.short else [])
        output = await self._git(command, "git status failed")
        return {"status": output or "Nothing to commit, working tree clean"}


class GitDiffTool(GitTool):
    name = "git_diff"
    description = "Show unstaged changes, or staged changes with staged=true."

    class Arguments(BaseModel):
        staged: bool = Field(False, description="Show staged changes (--cached)")
        file: Optional[str] = Field(None, description="Limit the diff to one file")

    async def execute(self, args: "GitDiffTool.Arguments") -> dict:
        command = ["diff"]
        if args.staged:
            command.append("--cached")
        if args.file:
            command += ["--", self._checked_path(args.file)]
        output = await self._git(command, "git diff failed")
        return {"diff": output or "No changes"}


class GitLogTool(GitTool):
    name = "git_log"
    description = "Show commit history."

    class Arguments(BaseModel):
        count: int = Field(10, ge=1, le=50, description="Number of commits to show (1-50)")
        oneline: bool = Field(True, description="Compact one-line format")
        file: Optional[str] = Field(None, description="Only commits touching this file")

    async def execute(self, args: "GitLogTool.Arguments") -> dict:
        command = ["log", f"-{args.count}"]
        if args.oneline:
            command.append("--oneline")
        if args.file:
            command += ["--", self._checked_path(args.file)]
        stdout, stderr, code = await asyncio.to_thread(run_git, command, self.working_dir)
        if code != 0:
            # A repository without commits is not an error for the caller.
            if "does not have any commits" in stderr:
                return {"log": "No commits yet"}
            raise RuntimeError(stderr or "git log failed")
        return {"log": stdout or "No commits yet"}


class GitAddTool(GitTool):
    name = "git_add"
    description = "Stage files for commit. Use ['.'] to stage everything."
    requires_confirmation = True

    class Arguments(BaseModel):
        files: List[str] = Field(..., min_length=1, description="Paths to stage")

    async def execute(self, args: "GitAddTool.Arguments") -> dict:
        files = [self._checked_path(f) for f in args.files]
        output = await self._git(["add", "--", *files], "git add failed")
        return {"message": f"Staged: {', '.join(files)}", "output": output}


class GitCommitTool(GitTool):
    name = "git_commit"
    description = "Record staged changes in the repository."
    requires_confirmation = True

    class Arguments(BaseModel):
        message: str = Field(..., min_length=1, description="Commit message")
        all: bool = Field(False, description="Stage modified tracked files first (-a)")

    async def execute(self, args: "GitCommitTool.Arguments") -> dict:
        command = ["commit"] + (["-a"] if args.all else []) + ["-m", args.message]
        output = await self._git(command, "git commit failed")
        return {"message": "Committed successfully", "output": output}


class GitBranchTool(GitTool):
    name = "git_branch"
    description = "List, create, or switch branches."
    requires_confirmation = True

    class Arguments(BaseModel):
        action: Literal["list", "create", "switch"] = Field(..., description="Action to perform")
        name: Optional[str] = Field(None, description="Branch name (required for create and switch)")

    async def execute(self, args: "GitBranchTool.Arguments") -> dict:
        if args.action == "list":
            command = ["branch", "-a"]
        else:
            if not args.name:
                raise ValueError(f"Branch name required for {args.action}")
            name = _no_option(args.name, "Branch name")
            command = ["branch", name] if args.action == "create" else ["checkout", name]
        output = await self._git(command, f"git branch {args.action} failed")
        return {"output": output or f"Branch {args.action} successful"}


GIT_TOOL_CLASSES = (GitStatusTool, GitDiffTool, GitLogTool, GitAddTool, GitCommitTool, GitBranchTool)
