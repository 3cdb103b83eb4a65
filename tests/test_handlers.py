"""Tests for the MCP-facing handlers and server startup."""

import pytest
from mcp import types

from bruno_mcp.config import parse_args
from bruno_mcp.errors import AppError
from bruno_mcp.handlers import Handlers
from bruno_mcp.naming import ToolRegistry, ToolTarget
from bruno_mcp.runner import BrunoRunner
from bruno_mcp.schema import TOOL_INPUT_SCHEMA
from bruno_mcp.server import build_registry, create_server, main

from conftest import write_file


class RecordingRunner:
    """Stands in for BrunoRunner; remembers what it was asked to run."""

    def __init__(self, result="Status: 200", error=None):
        self.calls = []
        self.result = result
        self.error = error

    async def run(self, target, options):
        self.calls.append((target, options))
        if self.error:
            raise self.error
        return self.result


def make_registry():
    return ToolRegistry([
        ToolTarget(
            tool_name="billing_users_list",
            bru_file="/c/users/list.bru",
            collection_root="/c",
            request_path="users/list",
            requires_env=False,
        ),
        ToolTarget(
            tool_name="billing_auth_login",
            bru_file="/c/auth/login.bru",
            collection_root="/c",
            request_path="auth/login",
            requires_env=True,
            template_vars=("host",),
            docs="Log a user in.",
        ),
    ])


class TestHandlers:
    """Test listing and calling tools."""

    def test_list_tools(self):
        handlers = Handlers(make_registry(), RecordingRunner())
        tools = handlers.list_tools()

        assert [t.name for t in tools] == ["billing_auth_login", "billing_users_list"]
        assert tools[0].description == "Log a user in."
        assert tools[1].description == "Execute Bruno request: users/list"
        assert tools[0].inputSchema == TOOL_INPUT_SCHEMA

    async def test_call_tool_passes_options(self):
        runner = RecordingRunner(result="Status: 200\n\nHeaders:\n{}\n\nBody:\nok")
        handlers = Handlers(make_registry(), runner, env_name="dev", timeout_seconds=5, body_limit_bytes=100)

        content = await handlers.call_tool("billing_auth_login", {"vars": {"host": "x"}})

        assert content[0].type == "text"
        assert content[0].text.endswith("Body:\nok")
        target, options = runner.calls[0]
        assert target.tool_name == "billing_auth_login"
        assert options.env_name == "dev"
        assert options.timeout_seconds == 5
        assert options.body_limit_bytes == 100
        assert options.variables == {"host": "x"}

    async def test_unknown_tool(self):
        runner = RecordingRunner()
        handlers = Handlers(make_registry(), runner)

        with pytest.raises(AppError) as exc:
            await handlers.call_tool("billing_missing", {})
        assert exc.value.code == "E_TOOL_NOT_FOUND"
        assert runner.calls == []

    async def test_bad_arguments(self):
        runner = RecordingRunner()
        handlers = Handlers(make_registry(), runner)

        with pytest.raises(AppError, match="E_INPUT"):
            await handlers.call_tool("billing_users_list", {"vars": {"n": 1}})
        assert runner.calls == []

    async def test_runner_errors_propagate(self):
        error = AppError("E_TIMEOUT", "Bruno request timed out after 1s.")
        handlers = Handlers(make_registry(), RecordingRunner(error=error))

        with pytest.raises(AppError) as exc:
            await handlers.call_tool("billing_users_list", None)
        assert exc.value is error

    async def test_unexpected_errors_are_wrapped(self):
        handlers = Handlers(make_registry(), RecordingRunner(error=RuntimeError("boom")))

        with pytest.raises(AppError) as exc:
            await handlers.call_tool("billing_users_list", {})
        assert exc.value.code == "E_UNKNOWN"
        assert "boom" in exc.value.message

    def test_create_server(self):
        server = create_server(Handlers(make_registry(), RecordingRunner()))
        assert server.name == "bruno-mcp"


async def send_call(server, name, arguments):
    request = types.CallToolRequest(
        method="tools/call",
        params=types.CallToolRequestParams(name=name, arguments=arguments),
    )
    result = await server.request_handlers[types.CallToolRequest](request)
    return result.root


class TestServerRouting:
    """Test tool calls sent through the MCP request handlers."""

    @pytest.mark.parametrize(
        "arguments, fragment",
        [
            ({"nope": {}}, "Unsupported input key: nope"),
            ({"vars": {"n": 1}}, "vars.n must be a string"),
        ],
    )
    async def test_bad_arguments_keep_error_code(self, arguments, fragment):
        runner = RecordingRunner()
        server = create_server(Handlers(make_registry(), runner))

        result = await send_call(server, "billing_users_list", arguments)

        assert result.isError
        assert result.content[0].text.startswith("[E_INPUT]")
        assert fragment in result.content[0].text
        assert runner.calls == []

    async def test_unknown_tool_keeps_error_code(self):
        server = create_server(Handlers(make_registry(), RecordingRunner()))

        result = await send_call(server, "billing_missing", {})

        assert result.isError
        assert result.content[0].text == "[E_TOOL_NOT_FOUND] Unknown tool: billing_missing"

    async def test_successful_call(self):
        runner = RecordingRunner(result="Status: 200")
        server = create_server(Handlers(make_registry(), runner))

        result = await send_call(server, "billing_auth_login", {"vars": {"host": "x"}})

        assert not result.isError
        assert result.content[0].text == "Status: 200"
        assert runner.calls[0][1].variables == {"host": "x"}


class TestEndToEnd:
    """Collection on disk -> registry -> fake bru run."""

    async def test_collection_to_output(self, collection, fake_bru):
        write_file(collection / "auth" / "login.bru", "post {\n  url: https://api.test/login\n}\n")
        write_file(collection / "collection.bru", "docs {\n  Billing API\n}\n")

        config = parse_args(["--collection", str(collection), "--prefix", "billing"], environ={})
        registry = await build_registry(config)

        assert list(registry) == ["billing_auth_login"]

        handlers = Handlers(registry, BrunoRunner(bru_bin=str(fake_bru)))
        content = await handlers.call_tool("billing_auth_login", {})

        assert "Status: 200" in content[0].text
        assert '"ok":true' in content[0].text

    async def test_single_mode(self, collection):
        bru = write_file(collection / "auth" / "login.bru")
        config = parse_args(["--bru", str(bru)], environ={})

        registry = await build_registry(config)
        assert list(registry) == ["billing_login"]

    async def test_empty_collection_aborts(self, collection):
        config = parse_args(["--collection", str(collection)], environ={})

        with pytest.raises(AppError) as exc:
            await build_registry(config)
        assert exc.value.code == "E_DISCOVERY"

    async def test_collision_aborts(self, collection):
        write_file(collection / "Get User.bru")
        write_file(collection / "get-user.bru")
        config = parse_args(["--collection", str(collection)], environ={})

        with pytest.raises(AppError, match="E_NAMING"):
            await build_registry(config)


class TestMain:
    """Test the process entry point's error handling."""

    @pytest.fixture(autouse=True)
    def _no_logging_setup(self, monkeypatch):
        monkeypatch.setattr("bruno_mcp.server.configure_logging", lambda level: None)

    def test_bad_arguments_exit_1(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--nope"])

        assert exc.value.code == 1
        assert capsys.readouterr().err.startswith("[E_ARGS]")

    def test_startup_error_exit_1(self, collection, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--collection", str(collection)])

        assert exc.value.code == 1
        assert "[E_DISCOVERY] No .bru files were found" in capsys.readouterr().err
