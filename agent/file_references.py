"""Expand ``@path`` references in a user message into inline file contents.

    @src/app.py           whole file
    @./README.md:10-20    lines 10 to 20
    @notes.txt:5          line 5 only

Each reference becomes a ``<file path="...">`` block. References that cannot
be read stay in the text with a "(file not found)" marker and are reported
in ``failed_files``. An ``@`` preceded by a word character (an e-mail
address) is not a reference.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

FILE_REFERENCE_RE = re.compile(r"(?<![\w@])@((?:\.{0,2}/)?[\w./-]+\.\w+)(?::(\d+)(?:-(\d+))?)?")
DEFAULT_MAX_FILE_SIZE = 100_000


@dataclass
class FailedReference:
    path: str
    error: str


@dataclass
class FileReferenceResult:
    expanded_message: str
    referenced_files: List[str] = field(default_factory=list)
    failed_files: List[FailedReference] = field(default_factory=list)


def _read_lines(path: Path, start: Optional[int], end: Optional[int], max_file_size: int) -> str:
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    size = path.stat().st_size
    if size > max_file_size:
        raise ValueError(f"File too large: {size} bytes (max {max_file_size})")
    content = path.read_text(encoding="utf-8", errors="replace")
    if start is None:
        return content
    lines = content.split("\n")
    return "\n".join(lines[max(0, start - 1):end])


def expand_file_references(
    message: str,
    cwd: Optional[str] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> FileReferenceResult:
    """Replace every ``@path[:start[-end]]`` in ``message`` with the file's contents.

    Relative paths resolve against ``cwd`` (the process cwd when omitted).
    Repeated references are read once.
    """
    base = Path(cwd) if cwd else Path.cwd()
    result = FileReferenceResult(expanded_message=message)
    seen: Dict[str, str] = {}

    def replace(match: "re.Match[str]") -> str:
        whole = match.group(0)
        if whole in seen:
            return seen[whole]
        ref_path = match.group(1)
        start = int(match.group(2)) if match.group(2) else None
        end = int(match.group(3)) if match.group(3) else start
        target = Path(ref_path) if Path(ref_path).is_absolute() else base / ref_path

        try:
            content = _read_lines(target, start, end, max_file_size)
        except (OSError, ValueError) as e:
            logger.debug("File reference %s not expanded: %s", ref_path, e)
            result.failed_files.append(FailedReference(ref_path, str(e)))
            replacement = f"{whole} (file not found)"
        else:
            line_info = ""
            if start is not None:
                line_info = f":{start}" + (f"-{end}" if end != start else "")
            replacement = f'\n\n<file path="{ref_path}{line_info}">\n{content}\n</file>\n'
            result.referenced_files.append(str(target.resolve()))
        seen[whole] = replacement
        return replacement

    result.expanded_message = FILE_REFERENCE_RE.sub(replace, message)
    return result
