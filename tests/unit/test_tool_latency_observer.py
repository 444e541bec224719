import pytest
from pydantic import BaseModel

from dev_assistant.agent.registry import InProcessToolProvider, ToolRegistry, ToolSpec
from dev_assistant.errors import ToolArgumentError


class EchoInput(BaseModel):
    text: str


def _registry() -> ToolRegistry:
    def _handler(data: EchoInput) -> str:
        return data.text.upper()

    registry = ToolRegistry()
    registry.register_provider(
        "local",
        InProcessToolProvider(
            [ToolSpec(name="echo", description="uppercase", args_schema=EchoInput, handler=_handler)]
        ),
    )
    return registry


def test_tool_observer_captures_latency_and_payload() -> None:
    registry = _registry()

    observed = []
    registry.set_observer(observed.append)
    result = registry.call_tool("echo", {"text": "hello"})
    registry.set_observer(None)

    assert result == "HELLO"
    assert len(observed) == 1
    assert observed[0].name == "echo"
    assert observed[0].input_payload == {"text": "hello"}
    assert observed[0].output_preview == "HELLO"
    assert observed[0].latency_ms >= 0.0
    assert not observed[0].error


def test_tool_observer_marks_failed_calls() -> None:
    registry = _registry()

    observed = []
    registry.set_observer(observed.append)
    with pytest.raises(ToolArgumentError):
        registry.call_tool("echo", {})

    assert len(observed) == 1
    assert observed[0].error
