"""
Bruno MCP Configuration

Turns command-line flags and environment variables into a ServerConfig.

Flags:
- --bru <file>: expose a single request file
- --collection <dir>: expose every request file in a collection
- --env <name>: Bruno environment passed to every run
- --prefix <prefix>: tool name prefix (default: collection directory name)
- --name <name>: explicit tool name (single-file mode)

Environment variables:
- BRUNO_MCP_TIMEOUT: Seconds before a request run is killed (default: 30)
- BRUNO_MCP_BODY_LIMIT: Max response body bytes returned (default: 65536)
- BRUNO_MCP_BRU_BIN: Bruno CLI executable (default: bru)
- BRUNO_MCP_LOG_LEVEL: Logging level for stderr output (default: WARNING)
"""

import argparse
import math
import os
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from .errors import AppError, ensure


DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_BODY_LIMIT_BYTES = 65_536
DEFAULT_BRU_BIN = "bru"
DEFAULT_LOG_LEVEL = "WARNING"

COLLECTION_MARKER = "bruno.json"


class ServerConfig(BaseModel):
    """Validated startup configuration. Never changes after startup."""
    model_config = ConfigDict(frozen=True)

    mode: Literal["single", "collection"]
    collection_root: Path
    bru_file: Optional[Path] = None
    env_name: Optional[str] = None
    prefix: Optional[str] = None
    name: Optional[str] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    body_limit_bytes: int = DEFAULT_BODY_LIMIT_BYTES
    bru_bin: str = DEFAULT_BRU_BIN
    log_level: str = DEFAULT_LOG_LEVEL


class _ArgumentParser(argparse.ArgumentParser):
    """argparse that raises AppError instead of exiting."""

    def error(self, message):
        raise AppError("E_ARGS", message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="bruno-mcp",
        description="Expose Bruno requests as MCP tools over stdio.",
    )
    parser.add_argument("--bru", help="Path to a single .bru request file")
    parser.add_argument("--collection", help="Path to a Bruno collection directory")
    parser.add_argument("--env", help="Bruno environment name")
    parser.add_argument("--prefix", help="Tool name prefix")
    parser.add_argument("--name", help="Tool name override (single-file mode)")
    return parser


def resolve_readable_path(input_path: str, expected: Literal["file", "dir"]) -> Path:
    """
    Resolve a user-supplied path to its canonical real path.

    Rejects '..' segments outright, then checks the path exists,
    is the expected kind, and is readable.
    """
    segments = [s for s in re.split(r"[\\/]+", input_path) if s]
    ensure(
        ".." not in segments,
        "E_ARGS",
        f"Path traversal tokens are not allowed in input path: {input_path}",
    )

    try:
        real = Path(input_path).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise AppError("E_ARGS", f"Path not found or not accessible: {input_path}. {e}") from e

    if expected == "file":
        ensure(real.is_file(), "E_ARGS", f"Expected a file path but found: {input_path}")
    else:
        ensure(real.is_dir(), "E_ARGS", f"Expected a directory path but found: {input_path}")

    ensure(os.access(real, os.R_OK), "E_ARGS", f"Path is not readable: {input_path}")
    return real


def find_collection_root(start: Path) -> Path:
    """Walk up from start to the nearest directory with a readable bruno.json."""
    for candidate in (start, *start.parents):
        marker = candidate / COLLECTION_MARKER
        if marker.is_file() and os.access(marker, os.R_OK):
            return candidate

    raise AppError(
        "E_ARGS",
        f"Collection root not found. Expected a readable {COLLECTION_MARKER} in {start} or its parents.",
    )


def _env_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if not raw:
        return default

    try:
        value = cast(raw)
    except ValueError as e:
        raise AppError("E_ARGS", f"{name} must be a number, got {raw!r}") from e

    ensure(math.isfinite(value) and value > 0, "E_ARGS", f"{name} must be positive, got {raw!r}")
    return value


def parse_args(
    argv: Sequence[str],
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Parse and validate startup arguments. Raises AppError(E_ARGS) on any problem."""
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(list(argv))

    ensure(
        bool(args.bru) != bool(args.collection),
        "E_ARGS",
        "Provide exactly one of --bru <path> or --collection <path>.",
    )

    common = {
        "env_name": args.env,
        "prefix": args.prefix,
        "name": args.name,
        "timeout_seconds": _env_number(
            environ, "BRUNO_MCP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS, float
        ),
        "body_limit_bytes": _env_number(
            environ, "BRUNO_MCP_BODY_LIMIT", DEFAULT_BODY_LIMIT_BYTES, int
        ),
        "bru_bin": environ.get("BRUNO_MCP_BRU_BIN") or DEFAULT_BRU_BIN,
        "log_level": (environ.get("BRUNO_MCP_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper(),
    }

    if args.bru:
        ensure(args.bru.endswith(".bru"), "E_ARGS", "--bru must point to a .bru file.")
        bru_file = resolve_readable_path(args.bru, "file")
        return ServerConfig(
            mode="single",
            bru_file=bru_file,
            collection_root=find_collection_root(bru_file.parent),
            **common,
        )

    collection_root = resolve_readable_path(args.collection, "dir")
    find_collection_root(collection_root)
    return ServerConfig(mode="collection", collection_root=collection_root, **common)
