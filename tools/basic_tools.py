"""
Basic built-in tools.

- CalculatorTool: Safe arithmetic evaluation (no ``eval``)
- ReadFileTool: Read file contents inside the working directory
- WriteFileTool: Write files inside the working directory (needs confirmation)
- BashTool: Execute shell commands (needs confirmation)

Failures are raised as ordinary exceptions; the registry wraps them into
``ToolExecutionFailed`` and the agent loop turns that into an error payload.
"""

import ast
import asyncio
import math
import operator
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

from tools.base import CORE, EXTENDED, Tool


def resolve_within(base: Path, user_path: str) -> Path:
    """Resolve ``user_path`` against ``base``; refuse anything outside it."""
    base = base.resolve()
    resolved = (base / user_path).resolve()
    if resolved != base and base not in resolved.parents:
        raise PermissionError(f'Path "{user_path}" is outside the allowed directory')
    return resolved


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}

_FUNCTIONS = {
    "sqrt": math.sqrt,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "abs": abs,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": round,
    "min": min,
    "max": max,
    "pow": math.pow,
    "exp": math.exp,
}
_CONSTANTS = {"PI": math.pi, "pi": math.pi, "E": math.e, "e": math.e}

_MAX_EXPONENT = 10000


def _eval_node(node: ast.AST) -> Union[int, float]:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValueError("Exponent too large")
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        return _FUNCTIONS[node.func.id](*[_eval_node(a) for a in node.args])
    raise ValueError(f"Unsupported expression element: {ast.dump(node)[:60]}")


def evaluate_expression(expression: str) -> Union[int, float]:
    """Evaluate an arithmetic expression. ``^`` is accepted as power."""
    try:
        tree = ast.parse(expression.replace("^", "**"), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {expression}") from e
    result = _eval_node(tree)
    if isinstance(result, float) and (math.isnan(result) or math.isinf(result)):
        raise ValueError("Result is not a finite number")
    return result


class CalculatorTool(Tool):
    name = "calculator"
    description = (
        "Evaluate a mathematical expression. Supports + - * / // % ^, parentheses, "
        "functions (sqrt, sin, cos, tan, log, log10, log2, abs, floor, ceil, round, "
        "min, max, pow, exp) and constants PI and E."
    )
    priority = CORE

    class Arguments(BaseModel):
        expression: str = Field(..., description="The expression to evaluate, e.g. '2 * (3 + 4)'")

    async def execute(self, args: "CalculatorTool.Arguments") -> dict:
        result = evaluate_expression(args.expression)
        return {"expression": args.expression, "result": result}


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class ReadFileTool(Tool):
    """Read the contents of a file."""

    name = "read_file"
    description = "Read the contents of a file at the given path (relative to the working directory)."
    priority = CORE

    class Arguments(BaseModel):
        path: str = Field(..., description="Path to the file (relative to working directory)")

    def __init__(self, working_dir: Optional[str] = None, max_file_size: int = 100000):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.max_file_size = max_file_size

    def _read(self, path: str) -> str:
        resolved = resolve_within(self.working_dir, path)
        if not resolved.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not resolved.is_file():
            raise IsADirectoryError(f"Not a file: {path}")
        size = resolved.stat().st_size
        if size > self.max_file_size:
            raise ValueError(f"File too large: {size} bytes (max {self.max_file_size})")
        return resolved.read_text(encoding="utf-8", errors="replace")

    async def execute(self, args: "ReadFileTool.Arguments") -> str:
        return await asyncio.to_thread(self._read, args.path)


class WriteFileTool(Tool):
    """Write content to a file."""

    name = "write_file"
    description = "Write content to a file at the given path. Creates parent directories if needed."
    priority = EXTENDED
    requires_confirmation = True

    class Arguments(BaseModel):
        path: str = Field(..., description="Path to the file (relative to working directory)")
        content: str = Field(..., description="Content to write to the file")

    def __init__(self, working_dir: Optional[str] = None, max_file_size: int = 100000):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.max_file_size = max_file_size

    def _write(self, path: str, content: str) -> None:
        resolved = resolve_within(self.working_dir, path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding="utf-8")

    async def execute(self, args: "WriteFileTool.Arguments") -> str:
        if len(args.content) > self.max_file_size:
            raise ValueError(f"Content too large: {len(args.content)} bytes (max {self.max_file_size})")
        await asyncio.to_thread(self._write, args.path, args.content)
        return f"Successfully wrote {len(args.content)} bytes to {args.path}"


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------

class BashTool(Tool):
    """Execute shell commands in the working directory."""

    name = "bash"
    description = (
        "Execute a bash command and return stdout/stderr. Use for running shell "
        "commands, scripts, or system operations."
    )
    priority = EXTENDED
    requires_confirmation = True

    class Arguments(BaseModel):
        command: str = Field(..., min_length=1, description="The bash command to execute")

    def __init__(self, working_dir: Optional[str] = None, timeout: float = 30.0, max_output_size: int = 10000):
        self.working_dir = working_dir or os.getcwd()
        self.timeout = timeout
        self.max_output_size = max_output_size

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_output_size:
            return text[: self.max_output_size] + "\n... (output truncated)"
        return text

    async def execute(self, args: "BashTool.Arguments") -> dict:
        process = await asyncio.create_subprocess_shell(
            args.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.working_dir,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TimeoutError(f"Command timed out after {self.timeout}s")

        stdout_str = self._truncate(stdout.decode("utf-8", errors="replace"))
        stderr_str = self._truncate(stderr.decode("utf-8", errors="replace"))

        output = stdout_str
        if stderr_str:
            output = f"{stdout_str}\n[stderr]\n{stderr_str}" if stdout_str else stderr_str
        return {"exit_code": process.returncode, "output": output.strip()}
