"""Shared fixtures: on-disk Bruno collections and a fake `bru` executable."""

import os
import sys
import textwrap
from pathlib import Path

import pytest


FAKE_BRU = textwrap.dedent('''
    import json
    import os
    import signal
    import sys
    import time

    args = sys.argv[1:]
    if len(args) < 2 or args[0] != "run" or "--output" not in args:
        print("missing required args", file=sys.stderr)
        sys.exit(2)

    request = args[1]
    output = args[args.index("--output") + 1]
    env_name = args[args.index("--env") + 1] if "--env" in args else ""
    env_vars = [args[i + 1] for i, a in enumerate(args) if a == "--env-var"]
    stem = os.path.basename(request)[: -len(".bru")]

    with open("last_pid.txt", "w") as f:
        f.write(str(os.getpid()))

    if stem == "exit_non_zero":
        for i in range(15):
            print(f"line {i}", file=sys.stderr)
        print("simulated failure", file=sys.stderr)
        sys.exit(9)

    if stem == "sleep":
        time.sleep(30)

    if stem == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        time.sleep(30)

    if stem == "no_report":
        sys.exit(0)

    if stem == "bad_report":
        with open(output, "w") as f:
            f.write("not json")
        sys.exit(0)

    body = '{"ok":true}'
    if env_name:
        body += " env=" + env_name
    if env_vars:
        body += " vars=" + ",".join(env_vars)
    mcp_env = sorted(k + "=" + v for k, v in os.environ.items() if k.startswith("MCP_VAR_"))
    if mcp_env:
        body += " mcp_env=" + ",".join(mcp_env)
    body += " cwd=" + os.getcwd()

    report = {
        "results": [
            {
                "response": {
                    "statusCode": 200,
                    "headers": {"content-type": "application/json"},
                    "body": body,
                }
            }
        ]
    }
    with open(output, "w") as f:
        json.dump(report, f)
''')


def write_file(path: Path, content: str = "meta {\n  name: request\n}\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def collection(tmp_path):
    """An empty collection root (contains bruno.json)."""
    root = tmp_path / "billing"
    root.mkdir()
    (root / "bruno.json").write_text('{"version": "1", "name": "billing"}', encoding="utf-8")
    return root.resolve()


@pytest.fixture
def fake_bru(tmp_path):
    """Path to an executable that behaves like `bru run` for tests."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "bru"
    script.write_text(f"#!{sys.executable}\n{FAKE_BRU}", encoding="utf-8")
    script.chmod(0o755)
    return script


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True
