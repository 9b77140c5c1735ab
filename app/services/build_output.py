"""
Build Output Parser

Extracts the primary error location and a short summary from deploy logs,
compiler output and runtime stack traces.

Recognised shapes:
- Python:   File "/app/main.py", line 12, in <module>
- .NET:     at Foo.Bar() in /src/Program.cs:line 42   |   Program.cs(42,7): error CS1002
- Node.js:  at handler (/app/routes/users.js:43:11)
- Java:     at com.acme.App.main(App.java:17)
- Generic:  path/to/file.go:88
"""

import re
from typing import Optional, List
from pydantic import BaseModel

# Truncate from the front; the last lines of a log hold the failure
MAX_PARSE_CHARS = 8000
MAX_SUMMARY_CHARS = 500

_LOCATION_PATTERNS = [
    re.compile(r'File "(?P<file>[^"]+)", line (?P<line>\d+)'),
    re.compile(r"\bin (?P<file>\S+\.cs):line (?P<line>\d+)"),
    re.compile(r"(?P<file>[\w./\\-]+\.cs)\((?P<line>\d+),\d+\)"),
    re.compile(r"\((?P<file>[^()\s]+\.(?:js|ts|mjs|cjs)):(?P<line>\d+):\d+\)"),
    re.compile(r"\bat (?P<file>[^()\s]+\.(?:js|ts|mjs|cjs)):(?P<line>\d+):\d+"),
    re.compile(r"\((?P<file>\w+\.java):(?P<line>\d+)\)"),
    re.compile(r"(?P<file>[\w./\\-]+\.(?:py|go|php|rb|java|cs|js|ts)):(?P<line>\d+)"),
]

_LIBRARY_MARKERS = ("node_modules", "site-packages", "dist-packages", "/usr/lib/", "internal/", "java.base/")

_ERROR_LINE = re.compile(
    r"(error\b|exception\b|traceback|failed\b|fatal\b|cannot\b|not found)",
    re.IGNORECASE,
)

_STACK_LINE = re.compile(r'^\s*(at\s+\S|File ".+", line \d+|Traceback \(most recent call last\)|#\d+\s+\S)')


class ParsedBuildOutput(BaseModel):
    """Error details extracted from build or runtime output."""
    file: Optional[str] = None
    line: Optional[int] = None
    stack_trace: Optional[str] = None
    summary: Optional[str] = None


def _is_library_path(path: str) -> bool:
    return any(marker in path for marker in _LIBRARY_MARKERS)


def _find_location(text: str):
    fallback = None
    for pattern in _LOCATION_PATTERNS:
        for match in pattern.finditer(text):
            path = match.group("file")
            if not _is_library_path(path):
                return path, int(match.group("line"))
            if fallback is None:
                fallback = (path, int(match.group("line")))
    return fallback or (None, None)


def _stack_trace(lines: List[str]) -> Optional[str]:
    stack = [line for line in lines if _STACK_LINE.match(line)]
    if not stack:
        return None
    return "\n".join(line.rstrip() for line in stack)


def _summary(lines: List[str], python_traceback: bool) -> Optional[str]:
    error_lines = [
        line.strip() for line in lines
        if _ERROR_LINE.search(line) and not _STACK_LINE.match(line)
    ]
    if error_lines:
        # Python puts the exception last, compilers put the first error first
        candidate = error_lines[-1] if python_traceback else error_lines[0]
    else:
        non_empty = [line.strip() for line in lines if line.strip()]
        if not non_empty:
            return None
        candidate = non_empty[-1]

    if len(candidate) > MAX_SUMMARY_CHARS:
        candidate = candidate[:MAX_SUMMARY_CHARS] + "..."
    return candidate


def parse_build_output(output: Optional[str]) -> Optional[ParsedBuildOutput]:
    """
    Parse build/deploy/runtime output.

    Args:
        output: Raw log or error text

    Returns:
        ParsedBuildOutput, or None for empty input
    """
    if not output or not output.strip():
        return None

    if len(output) > MAX_PARSE_CHARS:
        output = output[-MAX_PARSE_CHARS:]

    lines = output.splitlines()
    path, line = _find_location(output)

    return ParsedBuildOutput(
        file=path,
        line=line,
        stack_trace=_stack_trace(lines),
        summary=_summary(lines, "Traceback (most recent call last)" in output),
    )
