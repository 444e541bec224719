"""Language-model port backed by a LangChain chat model."""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from dev_assistant.config import AIConfig
from dev_assistant.errors import ConfigError, LanguageModelError
from dev_assistant.types import ConversationMessage

logger = logging.getLogger(__name__)

HUGGINGFACE_ROUTER_URL = "https://router.huggingface.co/v1"
_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")


class LanguageModel(Protocol):
    """Anything that turns a full conversation into the next reply."""

    def ask(self, messages: list[ConversationMessage]) -> str:
        """Return the model's reply to the conversation so far."""


class ChatModelClient:
    """Sends the whole conversation to a chat model on every call.

    There is no server-side session: callers pass the complete history each
    time. Reasoning blocks (`<think>...</think>`) emitted by some open models
    are removed from the reply.
    """

    def __init__(self, model: BaseChatModel) -> None:
        self.model = model

    def ask(self, messages: list[ConversationMessage]) -> str:
        logger.debug("Sending %d messages to chat model", len(messages))
        try:
            response = self.model.invoke([_to_langchain(message) for message in messages])
        except Exception as exc:
            logger.error("Chat model request failed: %s", exc)
            raise LanguageModelError(f"Failed to get response from chat model: {exc}") from exc

        answer = _THINK_BLOCK.sub("", _content_text(getattr(response, "content", response))).strip()
        if not answer:
            raise LanguageModelError("Empty response from chat model")
        logger.debug("Chat model replied with %d chars", len(answer))
        return answer

    def ask_text(self, prompt: str, system_prompt: str | None = None) -> str:
        messages: list[ConversationMessage] = []
        if system_prompt is not None:
            messages.append(ConversationMessage(role="system", content=system_prompt))
        messages.append(ConversationMessage(role="user", content=prompt))
        return self.ask(messages)

    def health_check(self) -> bool:
        try:
            self.ask_text("Hello", system_prompt="Reply with just 'OK'")
        except LanguageModelError:
            return False
        return True


def create_chat_model(config: AIConfig) -> BaseChatModel:
    """Build the default OpenAI-compatible chat model for `config`."""

    from langchain_openai import ChatOpenAI

    api_key = config.api_key or os.getenv("HF_TOKEN") or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ConfigError("ai.api_key is not set (or export HF_TOKEN)")
    return ChatOpenAI(
        model=config.model,
        api_key=api_key,
        base_url=config.api_url or HUGGINGFACE_ROUTER_URL,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        top_p=0.95,
    )


def _to_langchain(message: ConversationMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts)
    return str(content)
