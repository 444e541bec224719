"""Tool registry over pluggable providers, with pydantic-validated in-process tools."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from time import perf_counter
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dev_assistant.errors import (
    AssistantError,
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistrationError,
)
from dev_assistant.types import ToolDescriptor, ToolInputSchema, ToolProperty, ToolTrace

logger = logging.getLogger(__name__)


class ToolProvider(Protocol):
    """A source of callable tools (in-process, or an external tool server)."""

    def list_tools(self) -> list[ToolDescriptor]:
        ...

    def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        ...


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], str]
    tags: list[str] = Field(default_factory=list)

    def descriptor(self) -> ToolDescriptor:
        schema = self.args_schema.model_json_schema()
        properties = {
            key: ToolProperty(
                type=_json_type(value),
                description=value.get("description", ""),
            )
            for key, value in schema.get("properties", {}).items()
        }
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=ToolInputSchema(
                properties=properties, required=list(schema.get("required", []))
            ),
            tags=list(self.tags),
        )

    def invoke(self, payload: dict[str, Any]) -> str:
        try:
            data = self.args_schema.model_validate(payload)
        except ValidationError as exc:
            raise ToolArgumentError(
                f"Invalid arguments for {self.name}: {validation_summary(exc)}"
            ) from exc
        return self.handler(data)


class InProcessToolProvider:
    """Serves a fixed set of `ToolSpec`s from inside the assistant process."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ToolRegistrationError(f"Tool declared twice: {spec.name}")
            self._specs[spec.name] = spec

    def list_tools(self) -> list[ToolDescriptor]:
        return [spec.descriptor() for spec in self._specs.values()]

    def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        spec = self._specs.get(name)
        if spec is None:
            raise ToolNotFoundError(name)
        try:
            return spec.invoke(arguments)
        except AssistantError:
            raise
        except Exception as exc:
            logger.error("Tool %s failed", name, exc_info=True)
            raise ToolExecutionError(f"{name} failed: {exc}") from exc


class ToolRegistry:
    """Routes tool calls to the provider that registered each tool name.

    The name -> provider map is built when a provider is registered. A tool
    name may belong to only one provider; a second registrant is rejected
    with `ToolRegistrationError`. Providers that cannot list their tools at
    registration time are kept aside and listed again the next time a tool
    name is not found.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ToolProvider] = {}
        self._routes: dict[str, str] = {}
        self._tags: dict[str, list[str]] = {}
        self._pending: list[str] = []
        self._observer: Callable[[ToolTrace], None] | None = None
        self._lock = threading.RLock()

    def register_provider(self, name: str, provider: ToolProvider) -> None:
        with self._lock:
            if name in self._providers:
                raise ToolRegistrationError(f"Tool provider already registered: {name}")
            try:
                descriptors = provider.list_tools()
            except Exception as exc:
                logger.warning("Provider %s could not list tools, will retry on lookup: %s", name, exc)
                self._providers[name] = provider
                self._pending.append(name)
                return
            self._add_routes(name, descriptors)
            self._providers[name] = provider
        logger.info("Registered tool provider %s with %d tools", name, len(descriptors))

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def provider_names(self) -> list[str]:
        return list(self._providers)

    def list_all_tools(self) -> list[ToolDescriptor]:
        """Ask every provider for its tools; a failing provider is skipped."""

        with self._lock:
            providers = list(self._providers.items())
        tools: list[ToolDescriptor] = []
        for name, provider in providers:
            try:
                listed = provider.list_tools()
            except Exception as exc:
                logger.error("Could not list tools from provider %s: %s", name, exc)
                continue
            logger.debug("Provider %s: %d tools", name, len(listed))
            tools.extend(listed)
        return tools

    def tool_names(self) -> list[str]:
        with self._lock:
            return list(self._routes)

    def has_tool(self, name: str) -> bool:
        try:
            self._resolve(name)
        except ToolNotFoundError:
            return False
        return True

    def tags_for(self, name: str) -> list[str]:
        with self._lock:
            return list(self._tags.get(name, []))

    def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        provider = self._resolve(name)
        logger.info("Calling tool %s", name)
        start = perf_counter()
        try:
            output = provider.call_tool(name, arguments)
        except Exception as exc:
            self._emit(name, arguments, str(exc), start, error=True)
            raise
        self._emit(name, arguments, output, start)
        return output

    def _resolve(self, name: str) -> ToolProvider:
        with self._lock:
            provider_name = self._routes.get(name)
            if provider_name is None and self._pending:
                self._retry_pending()
                provider_name = self._routes.get(name)
            if provider_name is None:
                raise ToolNotFoundError(name)
            return self._providers[provider_name]

    def _retry_pending(self) -> None:
        for provider_name in list(self._pending):
            try:
                descriptors = self._providers[provider_name].list_tools()
            except Exception as exc:
                logger.warning("Provider %s still unavailable: %s", provider_name, exc)
                continue
            self._pending.remove(provider_name)
            try:
                self._add_routes(provider_name, descriptors)
            except ToolRegistrationError as exc:
                logger.error("Dropping provider %s: %s", provider_name, exc)
                del self._providers[provider_name]
                continue
            logger.info("Provider %s now serves %d tools", provider_name, len(descriptors))

    def _add_routes(self, provider_name: str, descriptors: list[ToolDescriptor]) -> None:
        seen: set[str] = set()
        for descriptor in descriptors:
            owner = self._routes.get(descriptor.name)
            if owner is not None or descriptor.name in seen:
                raise ToolRegistrationError(
                    f"Duplicate tool name {descriptor.name!r}: provided by "
                    f"{owner or provider_name} and {provider_name}"
                )
            seen.add(descriptor.name)
        for descriptor in descriptors:
            self._routes[descriptor.name] = provider_name
            self._tags[descriptor.name] = list(descriptor.tags)

    def _emit(
        self,
        name: str,
        arguments: dict[str, Any],
        output: str,
        start: float,
        *,
        error: bool = False,
    ) -> None:
        if self._observer is None:
            return
        self._observer(
            ToolTrace(
                name=name,
                input_payload=dict(arguments),
                output_preview=output[:320],
                latency_ms=(perf_counter() - start) * 1000.0,
                error=error,
            )
        )


def _json_type(property_schema: dict[str, Any]) -> str:
    if "type" in property_schema:
        return str(property_schema["type"])
    for option in property_schema.get("anyOf", []):
        if option.get("type") not in (None, "null"):
            return str(option["type"])
    return "string"


def validation_summary(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "arguments"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)
