"""Tool provider backed by an external tool server speaking JSON-RPC over stdio."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from itertools import count
from typing import IO, Any

from pydantic import BaseModel, Field, ValidationError

from dev_assistant.config import ToolServerConfig
from dev_assistant.errors import ToolExecutionError
from dev_assistant.types import ToolDescriptor, ToolInputSchema, ToolProperty

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "dev-assistant", "version": "0.1.0"}


class RpcError(BaseModel):
    code: int = 0
    message: str = "Unknown error"


class RpcResponse(BaseModel):
    id: int | str | None = None
    result: dict[str, Any] | None = None
    error: RpcError | None = None


class ContentItem(BaseModel):
    type: str = "text"
    text: str = ""


class CallToolResult(BaseModel):
    content: list[ContentItem] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")


class StdioToolProvider:
    """Starts the configured command and exchanges one JSON object per line.

    The connection is opened on first use: `initialize`, then the
    `notifications/initialized` notification, then `tools/list`, whose result
    is cached for the lifetime of the process. Requests are serialized; the
    server's stdout is read until the response with the matching id arrives.
    """

    def __init__(self, config: ToolServerConfig) -> None:
        self.config = config
        self._process: subprocess.Popen[str] | None = None
        self._tools: list[ToolDescriptor] | None = None
        self._ids = count(1)
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def list_tools(self) -> list[ToolDescriptor]:
        with self._lock:
            self._ensure_connected()
            if self._tools is None:
                result = self._request("tools/list", {})
                self._tools = [_descriptor(item) for item in result.get("tools", [])]
                logger.info("Tool server %s lists %d tools", self.config.name, len(self._tools))
            return list(self._tools)

    def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        with self._lock:
            self._ensure_connected()
            logger.debug("Tool server %s: calling %s with %s", self.config.name, name, arguments)
            payload = self._request("tools/call", {"name": name, "arguments": arguments})
        try:
            result = CallToolResult.model_validate(payload)
        except ValidationError as exc:
            raise ToolExecutionError(f"{name} returned a malformed result: {exc}") from exc
        text = "\n".join(item.text for item in result.content if item.text) or "Empty result"
        if result.is_error:
            raise ToolExecutionError(f"{name} failed: {text}")
        return text

    def close(self) -> None:
        with self._lock:
            self._disconnect()

    def _ensure_connected(self) -> None:
        if self.connected:
            return
        self._disconnect()
        logger.info("Starting tool server %s: %s", self.config.name, self.config.command)
        try:
            self._process = subprocess.Popen(
                [self.config.command, *self.config.args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                bufsize=1,
                env={**os.environ, **self.config.env},
            )
        except OSError as exc:
            self._process = None
            raise ToolExecutionError(f"Could not start tool server {self.config.name}: {exc}") from exc

        try:
            self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
            )
            self._send({"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}})
        except ToolExecutionError:
            self._disconnect()
            raise
        logger.info("Tool server %s connected", self.config.name)

    def _disconnect(self) -> None:
        process, self._process = self._process, None
        self._tools = None
        if process is None:
            return
        for stream in (process.stdin, process.stdout):
            if stream is not None:
                stream.close()
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()

    def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request_id = next(self._ids)
        self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        while True:
            line = self._readline()
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON line from %s: %s", self.config.name, line[:200])
                continue
            if not isinstance(payload, dict) or payload.get("id") != request_id:
                continue
            try:
                response = RpcResponse.model_validate(payload)
            except ValidationError as exc:
                raise ToolExecutionError(f"{self.config.name} sent a malformed {method} response") from exc
            if response.error is not None:
                raise ToolExecutionError(
                    f"{self.config.name} {method} error {response.error.code}: {response.error.message}"
                )
            return response.result or {}

    def _send(self, message: dict[str, Any]) -> None:
        stdin = self._stream("stdin")
        try:
            stdin.write(json.dumps(message) + "\n")
            stdin.flush()
        except OSError as exc:
            self._disconnect()
            raise ToolExecutionError(f"Tool server {self.config.name} closed its input: {exc}") from exc

    def _readline(self) -> str:
        line = self._stream("stdout").readline()
        if not line:
            self._disconnect()
            raise ToolExecutionError(f"Tool server {self.config.name} exited")
        return line.strip()

    def _stream(self, name: str) -> IO[str]:
        stream = getattr(self._process, name, None) if self._process is not None else None
        if stream is None:
            raise ToolExecutionError(f"Tool server {self.config.name} is not running")
        return stream


def _descriptor(payload: dict[str, Any]) -> ToolDescriptor:
    schema = payload.get("inputSchema") or {}
    properties = {
        key: ToolProperty(
            type=str(value.get("type", "string")),
            description=str(value.get("description", "")),
        )
        for key, value in (schema.get("properties") or {}).items()
        if isinstance(value, dict)
    }
    return ToolDescriptor(
        name=str(payload.get("name", "")),
        description=str(payload.get("description", "")),
        input_schema=ToolInputSchema(
            type=str(schema.get("type", "object")),
            properties=properties,
            required=[str(item) for item in schema.get("required", [])],
        ),
    )
