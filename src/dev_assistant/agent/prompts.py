"""Prompt text for the tool-calling agent."""

from __future__ import annotations

from dev_assistant.types import ToolDescriptor

_SYSTEM_PROMPT = """
You are a developer assistant for the project "{project}".
You help developers understand the project structure and answer questions about
its code, API and architecture. Answer briefly and concretely, with examples
from the documentation. If the documentation has no answer, say so.

Available tools:
{tools}

To call tools, reply with ONLY this JSON and nothing else:
{{"tools": [{{"name": "<tool name>", "arguments": {{"<parameter>": "<value>"}}}}]}}
You may list several calls at once. Tool results come back in the next message.
When you have everything you need, reply with the final answer as plain text
(or with {{"tools": []}} if no tool is needed and you have nothing to add).

Rules:
1) Use search_knowledge_base for questions about the project's documentation.
2) Use read_project_file when the user names a specific file.
3) End the answer with a "Sources:" section listing the files you used.
4) If the user says the previous answer was wrong, search the documentation
   again. If the search results you just received still do not answer the
   question, reply with exactly {sentinel} and nothing else.
""".strip()

ESCALATION_PROMPT = """
A more precise search for "{query}" returned the documentation below.
Answer the original question using ONLY this text. Quote it literally where
possible and do not call any tools.

{context}
""".strip()


def build_system_prompt(project: str, tools: list[ToolDescriptor], sentinel: str) -> str:
    return _SYSTEM_PROMPT.format(project=project, tools=format_tools(tools), sentinel=sentinel)


def format_tools(tools: list[ToolDescriptor]) -> str:
    if not tools:
        return "(no tools available)"
    lines: list[str] = []
    for tool in tools:
        lines.append(f"- {tool.name}: {tool.description}")
        for name, prop in tool.input_schema.properties.items():
            marker = "required" if name in tool.input_schema.required else "optional"
            lines.append(f"    {name} ({prop.type}, {marker}): {prop.description}".rstrip(": "))
    return "\n".join(lines)


def build_escalation_prompt(query: str, context: str) -> str:
    return ESCALATION_PROMPT.format(query=query, context=context)
