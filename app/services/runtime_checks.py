"""
Runtime Structure Checks

Detects a repository's runtime from marker files and checks the source tree
for what the platform needs from every student backend:

- error-handling registration
- CORS enablement
- port binding from the PORT environment variable
- a reference to the platform's error-reporting endpoint
- required dependency declarations

Detection is first-match-wins in RUNTIME_PRECEDENCE, so exactly one runtime
is checked per run even in a polyglot repository.
"""

import logging
import posixpath
import re
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Any

logger = logging.getLogger(__name__)


# (runtime, basename predicate)
RUNTIME_PRECEDENCE: List[Tuple[str, Callable[[str], bool]]] = [
    ("csharp", lambda name: name.endswith(".csproj")),
    ("java", lambda name: name in ("pom.xml", "build.gradle", "build.gradle.kts")),
    ("python", lambda name: name in ("requirements.txt", "pyproject.toml")),
    ("nodejs", lambda name: name == "package.json"),
    ("static", lambda name: name == "index.html"),
]

RUNTIME_PROFILES: Dict[str, Dict[str, Any]] = {
    "csharp": {
        "language": "C#",
        "source_extensions": (".cs", ".json"),
        "checks": {
            "error_handling": [r"UseExceptionHandler", r"UseMiddleware<\w*Exception\w*>", r"IExceptionHandler"],
            "cors": [r"AddCors\s*\(", r"UseCors\s*\("],
            "port_binding": [r"GetEnvironmentVariable\(\s*\"PORT\"\s*\)", r"ASPNETCORE_URLS", r"\$\{?PORT\}?"],
        },
        "dependencies": [("Npgsql", r"Npgsql")],
    },
    "java": {
        "language": "Java",
        "source_extensions": (".java", ".properties", ".yml", ".yaml"),
        "checks": {
            "error_handling": [r"@(Rest)?ControllerAdvice", r"@ExceptionHandler"],
            "cors": [r"@CrossOrigin", r"CorsRegistry", r"addCorsMappings"],
            "port_binding": [r"server\.port\s*[=:]\s*\$\{PORT", r"getenv\(\s*\"PORT\"\s*\)"],
        },
        "dependencies": [("PostgreSQL driver", r"postgresql"), ("Spring Web", r"spring-boot-starter-web")],
    },
    "python": {
        "language": "Python",
        "source_extensions": (".py",),
        "checks": {
            "error_handling": [r"exception_handler", r"add_exception_handler", r"errorhandler\s*\("],
            "cors": [r"CORSMiddleware", r"flask_cors", r"\bCORS\s*\("],
            "port_binding": [r"(environ|getenv)\W+[^\n]*[\"']PORT[\"']"],
        },
        "dependencies": [("PostgreSQL driver", r"psycopg|asyncpg"), ("Web framework", r"fastapi|flask|django")],
    },
    "nodejs": {
        "language": "Node.js",
        "source_extensions": (".js", ".ts", ".mjs", ".cjs"),
        "checks": {
            "error_handling": [r"\(\s*err\w*\s*,\s*req\s*,\s*res\s*,\s*next\s*\)", r"process\.on\(\s*['\"]uncaughtException"],
            "cors": [r"require\(\s*['\"]cors['\"]\s*\)", r"from\s+['\"]cors['\"]"],
            "port_binding": [r"process\.env\.PORT"],
        },
        "dependencies": [("pg", r"\"pg\"\s*:"), ("express", r"\"express\"\s*:")],
    },
    "static": {
        "language": "HTML/JavaScript",
        "source_extensions": (".html", ".js"),
        "checks": {},
        "dependencies": [],
    },
}

CHECK_LABELS = {
    "error_handling": "Global error handling is not registered",
    "cors": "CORS is not enabled",
    "port_binding": "Server does not bind to the PORT environment variable",
}

IGNORED_DIRS = {"node_modules", "bin", "obj", "dist", "build", "target", ".git", "venv", ".venv", "__pycache__"}

MAX_SOURCE_FILES = 40


def detect_runtime(paths: List[str]) -> Optional[str]:
    """Runtime key of the first marker in precedence order present in paths."""
    names = {posixpath.basename(p) for p in paths if not _ignored(p)}
    for runtime, is_marker in RUNTIME_PRECEDENCE:
        if any(is_marker(name) for name in names):
            return runtime
    return None


def runtime_language(runtime: Optional[str]) -> Optional[str]:
    if runtime is None:
        return None
    return RUNTIME_PROFILES[runtime]["language"]


def _ignored(path: str) -> bool:
    return any(part in IGNORED_DIRS for part in path.split("/")[:-1])


def _manifest_paths(paths: List[str], runtime: str) -> List[str]:
    predicate = dict(RUNTIME_PRECEDENCE)[runtime]
    return [p for p in paths if not _ignored(p) and predicate(posixpath.basename(p))]


def _source_paths(paths: List[str], runtime: str) -> List[str]:
    extensions = RUNTIME_PROFILES[runtime]["source_extensions"]
    candidates = [
        p for p in paths
        if not _ignored(p) and p.endswith(extensions) and "test" not in p.lower()
    ]
    # Shallow files first: entry points live near the root
    candidates.sort(key=lambda p: (p.count("/"), p))
    return candidates[:MAX_SOURCE_FILES]


async def check_runtime_structure(
    paths: List[str],
    read_file: Callable[[str], Awaitable[Optional[str]]],
    error_report_endpoint: str
) -> Tuple[List[str], Dict[str, Any]]:
    """
    Run the structural checks for the detected runtime.

    Args:
        paths: Every file path in the repository tree
        read_file: Async reader returning file text or None
        error_report_endpoint: Endpoint path the code must reference

    Returns:
        (issues, details)
    """
    runtime = detect_runtime(paths)
    details: Dict[str, Any] = {"runtime": runtime_language(runtime), "runtime_key": runtime}

    if runtime is None:
        return ["Could not detect the project runtime (no known marker files)"], details

    profile = RUNTIME_PROFILES[runtime]
    issues: List[str] = []

    sources: Dict[str, str] = {}
    for path in _source_paths(paths, runtime):
        content = await read_file(path)
        if content:
            sources[path] = content
    combined = "\n".join(sources.values())
    details["files_scanned"] = len(sources)

    for check, patterns in profile["checks"].items():
        found = any(re.search(pattern, combined) for pattern in patterns)
        details[check] = found
        if not found:
            issues.append(CHECK_LABELS[check])

    reports_errors = error_report_endpoint.lower() in combined.lower()
    details["error_reporting"] = reports_errors
    if not reports_errors:
        issues.append(f"No reference to the error-reporting endpoint '{error_report_endpoint}'")

    if profile["dependencies"]:
        manifests = []
        for path in _manifest_paths(paths, runtime):
            content = await read_file(path)
            if content:
                manifests.append(content)
        manifest_text = "\n".join(manifests)

        missing = [label for label, pattern in profile["dependencies"] if not re.search(pattern, manifest_text, re.IGNORECASE)]
        details["missing_dependencies"] = missing
        issues.extend(f"Missing dependency declaration: {label}" for label in missing)

    logger.info(f"Structure checks for {runtime}: {len(issues)} issue(s), {len(sources)} file(s) scanned")
    return issues, details
