"""
Runner - Execute one request through the Bruno CLI

For each tool call:
1. Check template variables can be resolved (env name or vars)
2. Run `bru run <request>.bru --output <tmp>.json --format json`
3. Kill the run if it exceeds the timeout (SIGTERM, then SIGKILL)
4. Parse the JSON report into status / headers / body
5. Format it as text, capping the body at a byte limit

Call-supplied vars reach Bruno two ways at once:
- `--env-var key=value` for `{{key}}` placeholders
- `MCP_VAR_<KEY>` in the process environment for scripts reading env
"""

import asyncio
import contextlib
import json
import logging
import math
import os
import re
import shutil
import tempfile
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .errors import AppError, ensure
from .naming import ToolTarget
from .schema import ReportView


logger = logging.getLogger(__name__)

ENV_VAR_PREFIX = "MCP_VAR_"
KILL_GRACE_SECONDS = 1.0
STDERR_TAIL_LINES = 10


@dataclass(frozen=True)
class RunOptions:
    """Per-call settings. Never outlives the call."""
    timeout_seconds: float
    body_limit_bytes: int
    env_name: Optional[str] = None
    variables: Optional[Mapping[str, str]] = None


# -------------------------------------------------------------------------
# Report parsing
# -------------------------------------------------------------------------

def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _to_header_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(_to_text(item) for item in value)
    return _to_text(value)


def _to_headers(raw: Any) -> dict[str, str]:
    """Accept either [{"name": ..., "value": ...}] or a plain mapping."""
    if isinstance(raw, list):
        headers = {}
        for item in raw:
            if isinstance(item, dict) and isinstance(item.get("name"), str):
                headers[item["name"]] = _to_header_value(item.get("value"))
        return headers

    if isinstance(raw, dict):
        return {str(k): _to_header_value(v) for k, v in raw.items()}

    return {}


def _parse_status(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str):
        try:
            number = float(raw.strip())
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return int(number)


def _first_present(source: dict, *keys: str) -> Any:
    for key in keys:
        if source.get(key) is not None:
            return source[key]
    return None


def _report_root(report: Any) -> dict:
    root = report[0] if isinstance(report, list) and report else report
    return root if isinstance(root, dict) else {}


def _first_result(report: Any) -> Optional[dict]:
    results = _report_root(report).get("results")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        return results[0]
    return None


def _dict_or_none(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def _result_response(report: Any) -> Optional[dict]:
    result = _first_result(report)
    return _dict_or_none(result.get("response")) if result else None


def _root_response(report: Any) -> Optional[dict]:
    return _dict_or_none(_report_root(report).get("response"))


def _root(report: Any) -> Optional[dict]:
    return _report_root(report) or None


# Tried in order. Bruno versions nest the response differently, and a
# level may carry the status while headers or body sit one level up.
REPORT_LEVELS: tuple[Callable[[Any], Optional[dict]], ...] = (
    _result_response,
    _first_result,
    _root_response,
    _root,
)


def extract_report_view(report: Any) -> ReportView:
    """
    Status comes from the first level with a parseable one. Headers and
    body are looked up field by field across all levels, in the same order.
    """
    levels = [level for level in (pick(report) for pick in REPORT_LEVELS) if level]

    status = None
    for level in levels:
        status = _parse_status(_first_present(level, "statusCode", "status"))
        if status is not None:
            break
    if status is None:
        raise AppError("E_REPORT", "Unable to parse response status from Bruno JSON report.")

    headers = next((level["headers"] for level in levels if level.get("headers") is not None), None)
    body = next(
        (value for value in (_first_present(level, "body", "data") for level in levels)
         if value is not None),
        None,
    )
    return ReportView(status_code=status, headers=_to_headers(headers), body_text=_to_text(body))


def format_tool_output(view: ReportView, body_limit_bytes: int) -> str:
    """
    Render status, headers and body as text.

    A body over body_limit_bytes (UTF-8) is cut on that byte boundary,
    dropping any partial character, and a truncation marker is appended.
    """
    body = view.body_text
    encoded = body.encode("utf-8", errors="replace")

    if len(encoded) > body_limit_bytes:
        limited = encoded[:body_limit_bytes].decode("utf-8", errors="ignore")
        body = f"{limited}\n[truncated to {body_limit_bytes} bytes]"

    headers = json.dumps(view.headers, indent=2, ensure_ascii=False)
    return f"Status: {view.status_code}\n\nHeaders:\n{headers}\n\nBody:\n{body}"


def load_report(report_path: Path) -> Any:
    try:
        raw = report_path.read_text(encoding="utf-8")
    except OSError as e:
        raise AppError("E_REPORT", f"Bruno JSON report not found at {report_path}: {e}") from e

    try:
        return json.loads(raw)
    except ValueError as e:
        raise AppError("E_REPORT", f"Bruno JSON report is invalid: {e}") from e


# -------------------------------------------------------------------------
# Variables
# -------------------------------------------------------------------------

def sanitize_env_var_name(key: str) -> str:
    value = re.sub(r"[^A-Z0-9]+", "_", key.upper())
    value = value.strip("_")
    return re.sub(r"_+", "_", value)


def build_vars_pass_through(
    variables: Optional[Mapping[str, str]],
) -> tuple[dict[str, str], list[str]]:
    """
    Returns (env additions, --env-var arguments) for the call's vars.

    Two keys that normalize to the same MCP_VAR_* name are rejected.
    """
    env_map: dict[str, str] = {}
    env_var_args: list[str] = []

    for key, value in (variables or {}).items():
        ensure(key, "E_VARS", "Vars key cannot be empty.")
        ensure("=" not in key, "E_VARS", f"Invalid vars key (must not include '='): {key}")

        normalized = sanitize_env_var_name(key)
        ensure(normalized, "E_VARS", f"Invalid vars key: {key}")
        env_key = f"{ENV_VAR_PREFIX}{normalized}"
        if env_key in env_map:
            raise AppError("E_VARS", f"Vars key collision after normalization: {key}")
        env_map[env_key] = value

        env_var_args.extend(["--env-var", f"{key}={value}"])

    return env_map, env_var_args


def check_env_requirements(target: ToolTarget, options: RunOptions) -> None:
    """Without an env name, every template variable must come in through vars."""
    if not target.requires_env or options.env_name:
        return

    provided = set(options.variables or {})
    missing = [name for name in target.template_vars if name not in provided]
    if missing:
        raise AppError(
            "E_ENV_REQUIRED",
            f"Request {target.tool_name} references template variables "
            f"({', '.join(missing)}). Provide --env <name> or pass all missing values via vars.",
        )


# -------------------------------------------------------------------------
# Process execution
# -------------------------------------------------------------------------

async def _stop_process(proc: asyncio.subprocess.Process) -> None:
    """SIGTERM, then SIGKILL if still alive after the grace window."""
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


def _stderr_tail(stderr: str) -> str:
    lines = stderr.strip().split("\n")
    return "\n".join(lines[-STDERR_TAIL_LINES:]).strip()


class BrunoRunner:
    """
    Runs request files with the Bruno CLI.

    The executable and the environment are injected; PATH lookup uses the
    environment snapshot, not the live process environment.
    """

    def __init__(self, bru_bin: str = "bru", base_env: Optional[Mapping[str, str]] = None):
        self.bru_bin = bru_bin
        self.base_env = dict(os.environ if base_env is None else base_env)

    def resolve_executable(self) -> str:
        return shutil.which(self.bru_bin, path=self.base_env.get("PATH")) or self.bru_bin

    def build_args(
        self,
        target: ToolTarget,
        options: RunOptions,
        env_var_args: list[str],
        report_path: Path,
    ) -> list[str]:
        args = ["run", f"{target.request_path}.bru"]
        if options.env_name:
            args.extend(["--env", options.env_name])
        args.extend(env_var_args)
        args.extend(["--output", str(report_path), "--format", "json"])
        return args

    async def _execute(
        self,
        args: list[str],
        cwd: Path,
        env: dict[str, str],
        timeout_seconds: float,
    ) -> tuple[int, str]:
        """Run bru, returning (exit code, stderr). Raises on spawn failure or timeout."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.resolve_executable(),
                *args,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AppError("E_RUNNER", f"Failed to spawn Bruno CLI: {e}") from e

        timed_out = False
        stderr_bytes = b""
        try:
            _, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            timed_out = True
        finally:
            if proc.returncode is None:
                await _stop_process(proc)

        if timed_out:
            logger.warning("bru run timed out after %ss (pid %s)", timeout_seconds, proc.pid)
            raise AppError("E_TIMEOUT", f"Bruno request timed out after {timeout_seconds:g}s.")

        # A signal-terminated process reports a negative code
        return_code = proc.returncode if proc.returncode is not None else -1
        return return_code, (stderr_bytes or b"").decode("utf-8", errors="replace")

    async def run(self, target: ToolTarget, options: RunOptions) -> str:
        """Run target's request and return formatted output. Raises AppError on failure."""
        check_env_requirements(target, options)
        env_map, env_var_args = build_vars_pass_through(options.variables)
        env = {**self.base_env, **env_map}

        with tempfile.TemporaryDirectory(prefix="bruno-mcp-") as tmp_dir:
            report_path = Path(tmp_dir) / f"{uuid.uuid4()}.json"
            args = self.build_args(target, options, env_var_args, report_path)
            logger.debug("Running %s: bru %s", target.tool_name, " ".join(args))

            return_code, stderr = await self._execute(
                args, target.collection_root, env, options.timeout_seconds
            )

            if return_code != 0:
                tail = _stderr_tail(stderr)
                logger.warning("bru run for %s exited with code %s", target.tool_name, return_code)
                raise AppError(
                    "E_BRU_EXIT",
                    f"Bruno CLI exited with code {return_code}. {tail or 'No stderr output.'}",
                )

            report = load_report(report_path)

        view = extract_report_view(report)
        return format_tool_output(view, options.body_limit_bytes)
