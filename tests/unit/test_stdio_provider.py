import sys
import textwrap

import pytest

from dev_assistant.agent.registry import ToolRegistry
from dev_assistant.agent.stdio_provider import StdioToolProvider
from dev_assistant.config import ToolServerConfig
from dev_assistant.errors import ToolExecutionError

FAKE_SERVER = textwrap.dedent(
    """
    import json
    import os
    import sys

    TOOLS = [
        {
            "name": "list_issues",
            "description": "List open issues",
            "inputSchema": {
                "type": "object",
                "properties": {"state": {"type": "string", "description": "open or closed"}},
                "required": ["state"],
            },
        },
        {"name": "fail", "description": "Always fails", "inputSchema": {"type": "object"}},
    ]

    print("server booting")
    sys.stdout.flush()
    for line in sys.stdin:
        message = json.loads(line)
        if "id" not in message:
            continue
        method = message["method"]
        if method == "initialize":
            result = {"protocolVersion": "2024-11-05", "capabilities": {}}
        elif method == "tools/list":
            result = {"tools": TOOLS}
        elif method == "tools/call":
            params = message["params"]
            if params["name"] == "fail":
                result = {"content": [{"type": "text", "text": "rate limited"}], "isError": True}
            elif params["name"] == "list_issues":
                token = os.environ.get("FAKE_TOKEN", "")
                text = f"{params['arguments']['state']} issues for {token}"
                result = {"content": [{"type": "text", "text": text}]}
            else:
                reply = {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "unknown tool"}}
                print(json.dumps(reply))
                sys.stdout.flush()
                continue
        else:
            result = {}
        print(json.dumps({"jsonrpc": "2.0", "method": "notifications/progress", "params": {}}))
        print(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": result}))
        sys.stdout.flush()
    """
)


@pytest.fixture()
def provider(tmp_path):
    script = tmp_path / "fake_server.py"
    script.write_text(FAKE_SERVER, encoding="utf-8")
    provider = StdioToolProvider(
        ToolServerConfig(
            name="fake",
            command=sys.executable,
            args=[str(script)],
            env={"FAKE_TOKEN": "octocat"},
        )
    )
    yield provider
    provider.close()


def test_lists_tools_after_handshake(provider) -> None:
    tools = provider.list_tools()

    assert [tool.name for tool in tools] == ["list_issues", "fail"]
    assert tools[0].input_schema.required == ["state"]
    assert tools[0].input_schema.properties["state"].description == "open or closed"
    assert provider.connected


def test_calls_tools_through_the_registry(provider) -> None:
    registry = ToolRegistry()
    registry.register_provider("fake", provider)

    assert registry.call_tool("list_issues", {"state": "open"}) == "open issues for octocat"
    with pytest.raises(ToolExecutionError, match="rate limited"):
        registry.call_tool("fail", {})


def test_rpc_errors_raise_execution_errors(provider) -> None:
    with pytest.raises(ToolExecutionError, match="unknown tool"):
        provider.call_tool("does_not_exist", {})


def test_missing_command_raises_execution_error() -> None:
    provider = StdioToolProvider(ToolServerConfig(name="ghost", command="/nonexistent/tool-server"))

    with pytest.raises(ToolExecutionError, match="Could not start"):
        provider.list_tools()
