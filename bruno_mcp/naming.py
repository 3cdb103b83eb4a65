"""
Naming - Turn request files into named tool targets

Each `.bru` file becomes one tool. The tool name is derived from the
file's path inside the collection:

    <prefix>_<dir>_<subdir>_<file stem>   e.g. billing_auth_login

Names are lower-case `[a-z0-9_]+`. Two files that sanitize to the same
name are a configuration error, never silently renamed.

Per file we also pull out:
- `{{var}}` template references (a request with any needs an env or vars)
- the first `docs { ... }` block (used as the tool description)
"""

import asyncio
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Optional

from .discovery import relative_to_root
from .errors import AppError, ensure


logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
TEMPLATE_VAR_PATTERN = re.compile(r"\{\{\s*([a-zA-Z0-9_.-]+)\s*\}\}")
BRU_EXTENSION_PATTERN = re.compile(r"\.bru$", re.IGNORECASE)

# Describes the collection itself, not a callable request
COLLECTION_METADATA_FILE = "collection.bru"

_DOCS_OPEN = re.compile(r"^\s*docs\s*\{\s*")
_BLOCK_CLOSE = re.compile(r"^\s*\}\s*$")


@dataclass(frozen=True)
class ToolTarget:
    """One request file exposed as a tool."""
    tool_name: str
    bru_file: Path
    collection_root: Path
    request_path: str  # relative to root, no extension, '/' separated
    requires_env: bool
    template_vars: tuple[str, ...] = ()
    docs: Optional[str] = None

    @property
    def description(self) -> str:
        if self.docs:
            return self.docs
        return f"Execute Bruno request: {self.request_path}"


class ToolRegistry(Mapping):
    """
    Read-only map of tool name -> ToolTarget.

    Built once at startup. Iterates in sorted name order.
    """

    def __init__(self, targets: Iterable[ToolTarget] = ()):
        entries: dict[str, ToolTarget] = {}
        for target in targets:
            if target.tool_name in entries:
                raise AppError(
                    "E_NAMING", f"Tool name collision after sanitization: {target.tool_name}"
                )
            entries[target.tool_name] = target
        self._targets = MappingProxyType(dict(sorted(entries.items())))

    def __getitem__(self, name: str) -> ToolTarget:
        return self._targets[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._targets)

    def __len__(self) -> int:
        return len(self._targets)

    def resolve(self, name: str) -> ToolTarget:
        target = self._targets.get(name)
        if target is None:
            raise AppError("E_TOOL_NOT_FOUND", f"Unknown tool: {name}")
        return target


# -------------------------------------------------------------------------
# Name derivation
# -------------------------------------------------------------------------

def sanitize_segment(text: str) -> str:
    value = re.sub(r"[^a-z0-9]+", "_", text.lower())
    value = value.strip("_")
    return re.sub(r"_+", "_", value)


def sanitize_prefix(text: str) -> str:
    value = sanitize_segment(text)
    ensure(
        value,
        "E_ARGS",
        "Prefix is empty after sanitization. Provide at least one alphanumeric character.",
    )
    return value


def validate_tool_name(name: str) -> str:
    ensure(name, "E_ARGS", "Tool name cannot be empty.")
    ensure(TOOL_NAME_PATTERN.match(name), "E_ARGS", "Tool name must match /^[a-z0-9_]+$/")
    return name


def derive_prefix(prefix_arg: Optional[str], collection_root: Path) -> str:
    """Use the explicit prefix if given, otherwise the collection directory name."""
    if prefix_arg:
        return sanitize_prefix(prefix_arg)
    return sanitize_prefix(Path(collection_root).name)


def build_tool_name_from_relative_path(prefix: str, relative_path: str) -> str:
    """
    Build a tool name from a root-relative request path.

    build_tool_name_from_relative_path("billing", "auth/login.bru") -> "billing_auth_login"
    """
    normalized = BRU_EXTENSION_PATTERN.sub("", relative_path.replace("\\", "/"))
    segments = [sanitize_segment(s) for s in normalized.split("/") if s]
    for segment in segments:
        ensure(segment, "E_NAMING", f"Invalid path segment in {relative_path}")
    return validate_tool_name(f"{prefix}_{'_'.join(segments)}")


# -------------------------------------------------------------------------
# File content extraction
# -------------------------------------------------------------------------

def extract_template_variables(content: str) -> list[str]:
    """Distinct `{{name}}` references in content, sorted."""
    return sorted(set(TEMPLATE_VAR_PATTERN.findall(content)))


def _join_docs(lines: list[str]) -> Optional[str]:
    text = "\n".join(lines).strip()
    return text or None


def extract_docs(content: str) -> Optional[str]:
    """
    Return the text of the first `docs { ... }` block, or None.

    Handles both the multi-line form (closing `}` on its own line) and
    the inline form `docs { text }`. An unterminated block runs to EOF.
    """
    lines = re.split(r"\r?\n", content)

    for index, line in enumerate(lines):
        opening = _DOCS_OPEN.match(line)
        if not opening:
            continue

        collected: list[str] = []
        rest = line[opening.end():].rstrip()
        if rest == "}":
            return None
        if rest:
            inline = re.sub(r"\s*\}$", "", rest).strip()
            if inline:
                collected.append(inline)
            if rest.endswith("}"):
                return _join_docs(collected)

        for body_line in lines[index + 1:]:
            if _BLOCK_CLOSE.match(body_line):
                return _join_docs(collected)
            collected.append(body_line)
        return _join_docs(collected)

    return None


def _read_request_metadata(bru_file: Path) -> tuple[list[str], Optional[str]]:
    content = bru_file.read_text(encoding="utf-8", errors="replace")
    return extract_template_variables(content), extract_docs(content)


async def _build_target(
    tool_name: str,
    bru_file: Path,
    collection_root: Path,
    relative_path: str,
) -> ToolTarget:
    template_vars, docs = await asyncio.to_thread(_read_request_metadata, bru_file)
    return ToolTarget(
        tool_name=tool_name,
        bru_file=bru_file,
        collection_root=collection_root,
        request_path=BRU_EXTENSION_PATTERN.sub("", relative_path),
        requires_env=bool(template_vars),
        template_vars=tuple(template_vars),
        docs=docs,
    )


# -------------------------------------------------------------------------
# Registry construction
# -------------------------------------------------------------------------

async def build_single_tool_map(
    bru_file: Path,
    collection_root: Path,
    prefix: str,
    name_override: Optional[str] = None,
) -> ToolRegistry:
    """Registry holding exactly one tool for a single request file."""
    bru_file = Path(bru_file)
    file_name = bru_file.name
    stem = file_name[: -len(".bru")] if file_name.endswith(".bru") else file_name
    file_stem = sanitize_segment(stem)
    ensure(file_stem, "E_NAMING", f"Invalid single request file name: {bru_file}")

    if name_override:
        tool_name = validate_tool_name(name_override)
    else:
        tool_name = validate_tool_name(f"{prefix}_{file_stem}")

    relative_path = relative_to_root(bru_file, collection_root)
    target = await _build_target(tool_name, bru_file, Path(collection_root), relative_path)
    return ToolRegistry([target])


async def build_collection_tool_map(
    bru_files: Iterable[Path],
    collection_root: Path,
    prefix: str,
) -> ToolRegistry:
    """
    Registry with one tool per request file.

    Every file must sit inside collection_root, even when the list did not
    come from discover_bru_files(). collection.bru is skipped.
    """
    collection_root = Path(collection_root)
    planned: dict[str, tuple[Path, str]] = {}

    for bru_file in bru_files:
        bru_file = Path(bru_file)
        relative_path = relative_to_root(bru_file, collection_root)

        if PurePosixPath(relative_path).name.lower() == COLLECTION_METADATA_FILE:
            continue

        tool_name = build_tool_name_from_relative_path(prefix, relative_path)
        if tool_name in planned:
            raise AppError("E_NAMING", f"Tool name collision after sanitization: {tool_name}")
        planned[tool_name] = (bru_file, relative_path)

    targets = await asyncio.gather(*(
        _build_target(tool_name, bru_file, collection_root, relative_path)
        for tool_name, (bru_file, relative_path) in planned.items()
    ))

    registry = ToolRegistry(targets)
    logger.debug("Built %d tools with prefix %r", len(registry), prefix)
    return registry
