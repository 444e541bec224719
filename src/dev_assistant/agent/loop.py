"""Multi-turn loop between the language model and registered tools."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from langchain_core.utils.json import parse_json_markdown
from pydantic import ValidationError

from dev_assistant.agent.docs_tools import RETRIEVAL_TAG, parse_sources
from dev_assistant.agent.prompts import build_escalation_prompt, build_system_prompt
from dev_assistant.agent.registry import ToolRegistry, validation_summary
from dev_assistant.agent.session import SessionContext
from dev_assistant.config import AgentConfig
from dev_assistant.errors import AssistantError, ToolArgumentError
from dev_assistant.llm.chat import LanguageModel
from dev_assistant.obs.tracing import Timer, TraceStore
from dev_assistant.retrieval.engine import format_context
from dev_assistant.retrieval.reranker import RerankedRetriever
from dev_assistant.types import ConversationMessage, ToolCall, ToolTrace

logger = logging.getLogger(__name__)

StopReason = Literal["final_answer", "empty_tool_list", "iteration_cap", "reranked"]

_FENCED_PAYLOAD = re.compile(r"```(?:json)?\s*(.*?)\s*```", flags=re.DOTALL | re.IGNORECASE)
_SINGLE_CALL_KEYS = ("tool", "toolName", "tool_name")


@dataclass(slots=True)
class AgentResult:
    answer: str
    sources: list[str]
    iterations: int
    stop_reason: StopReason
    tool_traces: list[ToolTrace] = field(default_factory=list)
    trace_id: str | None = None


@dataclass(slots=True)
class _Turn:
    question: str
    session: SessionContext
    messages: list[ConversationMessage]
    sources: list[str] = field(default_factory=list)
    traces: list[ToolTrace] = field(default_factory=list)
    iterations: int = 0


class AgentLoop:
    """Runs one question to completion against the model and the tool registry.

    Each model output is either a JSON tool-call payload, which is dispatched
    and answered with the tool results, or the final answer. The loop stops
    on a final answer, on an empty tool list, or after `max_iterations`
    model calls.

    After a retrieval tool has run, the next model output is checked against
    the rejection sentinel. If it matches, the original question is searched
    again through the reranker and the model answers once from that result.
    Escalation state lives in the caller's `SessionContext`, never on the loop.
    """

    def __init__(
        self,
        *,
        llm: LanguageModel,
        registry: ToolRegistry,
        reranked: RerankedRetriever,
        project_name: str,
        config: AgentConfig | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.reranked = reranked
        self.project_name = project_name
        self.config = config or AgentConfig()
        self.trace_store = trace_store

    def run(
        self,
        question: str,
        *,
        session: SessionContext,
        chat_history: list[ConversationMessage] | None = None,
    ) -> AgentResult:
        """Answer `question`; model failures propagate as `LanguageModelError`."""

        turn = _Turn(
            question=question,
            session=session,
            messages=[
                ConversationMessage(
                    role="system",
                    content=build_system_prompt(
                        self.project_name,
                        self.registry.list_all_tools(),
                        self.config.rejection_sentinel,
                    ),
                ),
                *(chat_history or []),
                ConversationMessage(role="user", content=question),
            ],
        )
        with Timer() as timer:
            result = self._run(turn)
        if result.stop_reason != "reranked":
            session.last_query = question
        logger.info(
            "Turn finished: stop_reason=%s iterations=%d tools=%d latency=%.0fms",
            result.stop_reason,
            result.iterations,
            len(result.tool_traces),
            timer.elapsed_ms,
        )

        if self.trace_store is not None:
            record = self.trace_store.create_record(
                session_id=session.session_id,
                question=question,
                answer=result.answer,
                sources=result.sources,
                tool_traces=result.tool_traces,
                iterations=result.iterations,
                stop_reason=result.stop_reason,
                latency_ms=timer.elapsed_ms,
            )
            result.trace_id = record.trace_id
        return result

    def _run(self, turn: _Turn) -> AgentResult:
        sentinel = self.config.rejection_sentinel
        output = ""
        while turn.iterations < self.config.max_iterations:
            output = self._ask(turn)

            if turn.session.awaiting_rejection:
                turn.session.awaiting_rejection = False
                if output.strip() == sentinel:
                    return self._escalate(turn, output)

            try:
                calls = parse_tool_calls(output)
            except ToolArgumentError as exc:
                logger.warning("Malformed tool call from model: %s", exc)
                turn.messages.append(ConversationMessage(role="assistant", content=output))
                turn.messages.append(
                    ConversationMessage(role="user", content=f"Error: {exc}", tool_result=True)
                )
                continue
            if calls is None:
                return self._finish(turn, output, "final_answer")
            if not calls:
                return self._finish(turn, output, "empty_tool_list")

            results: list[str] = []
            retrieval_ran = False
            for call in calls:
                text, is_retrieval = self._dispatch(call, turn)
                results.append(text)
                retrieval_ran = retrieval_ran or is_retrieval
            if retrieval_ran:
                turn.session.awaiting_rejection = True

            turn.messages.append(ConversationMessage(role="assistant", content=output))
            turn.messages.append(
                ConversationMessage(role="user", content="\n\n".join(results), tool_result=True)
            )

        logger.warning("Iteration cap of %d reached", self.config.max_iterations)
        return self._finish(turn, output, "iteration_cap")

    def _ask(self, turn: _Turn) -> str:
        turn.iterations += 1
        logger.debug("Model call %d with %d messages", turn.iterations, len(turn.messages))
        return self.llm.ask(turn.messages)

    def _dispatch(self, call: ToolCall, turn: _Turn) -> tuple[str, bool]:
        name = call.tool_name
        if not self.registry.has_tool(name):
            available = ", ".join(self.registry.tool_names()) or "none"
            logger.warning("Model requested unknown tool %s", name)
            return f"Error: unknown tool '{name}'. Available tools: {available}", False

        error = False
        with Timer() as timer:
            try:
                output = self.registry.call_tool(name, dict(call.arguments))
            except AssistantError as exc:
                logger.warning("Tool %s failed: %s", name, exc)
                output = f"Error calling {name}: {exc}"
                error = True
        turn.traces.append(
            ToolTrace(
                name=name,
                input_payload=dict(call.arguments),
                output_preview=output[:320],
                latency_ms=timer.elapsed_ms,
                error=error,
            )
        )
        if not error:
            _merge(turn.sources, parse_sources(output))
        return f"Result of {name}:\n{output}", RETRIEVAL_TAG in self.registry.tags_for(name)

    def _escalate(self, turn: _Turn, output: str) -> AgentResult:
        query = original_query(turn.messages, turn.question, turn.session.last_query)
        logger.info("Rejection signal received, reranking original query %r", query)
        result = self.reranked.search(query)
        context = format_context(result)

        turn.messages.append(ConversationMessage(role="assistant", content=output))
        turn.messages.append(
            ConversationMessage(
                role="user",
                content=build_escalation_prompt(query, context.context),
                tool_result=True,
            )
        )
        answer = self._ask(turn)
        turn.sources = list(context.sources)
        return self._finish(turn, answer, "reranked")

    @staticmethod
    def _finish(turn: _Turn, answer: str, reason: StopReason) -> AgentResult:
        return AgentResult(
            answer=answer,
            sources=list(turn.sources),
            iterations=turn.iterations,
            stop_reason=reason,
            tool_traces=list(turn.traces),
        )


def parse_tool_calls(text: str) -> list[ToolCall] | None:
    """Tool calls requested by `text`, or None when it is not a tool payload.

    Accepts `{"tools": [{"name": ..., "arguments": {...}}, ...]}` or a single
    `{"tool": ..., "arguments": {...}}` object. The whole reply must be the
    JSON object, bare or as the only content of a fenced block; prose that
    merely contains JSON is an answer. A payload of that shape whose calls
    do not validate raises `ToolArgumentError`.
    """

    candidate = _payload_text(text)
    if candidate is None:
        return None
    try:
        payload: Any = parse_json_markdown(candidate, parser=json.loads)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    if "tools" in payload:
        items = payload["tools"]
        if not isinstance(items, list):
            raise ToolArgumentError("'tools' must be a list of tool calls")
    elif any(key in payload for key in _SINGLE_CALL_KEYS):
        items = [payload]
    else:
        return None

    calls: list[ToolCall] = []
    for position, item in enumerate(items, start=1):
        try:
            calls.append(ToolCall.model_validate(item))
        except ValidationError as exc:
            raise ToolArgumentError(
                f"Malformed tool call #{position}: {validation_summary(exc)}"
            ) from exc
    return calls


def _payload_text(text: str) -> str | None:
    stripped = text.strip()
    fenced = _FENCED_PAYLOAD.fullmatch(stripped)
    if fenced is not None:
        return fenced.group(1)
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped
    return None


def original_query(
    messages: list[ConversationMessage],
    question: str,
    last_query: str | None = None,
) -> str:
    """The user's question before the current one.

    Tool results and the current question itself are skipped. Falls back to
    `last_query`, then to `question`.
    """

    for message in reversed(messages):
        if message.role != "user" or message.tool_result:
            continue
        if message.content.strip() == question.strip():
            continue
        return message.content
    return last_query or question


def _merge(target: list[str], items: list[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)
