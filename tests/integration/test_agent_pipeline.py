import json

from dev_assistant.api.main import build_assistant
from dev_assistant.config import AssistantConfig
from dev_assistant.ingest.embedder import HashingEmbedder
from dev_assistant.retrieval.reranker import SCORING_SYSTEM_PROMPT
from dev_assistant.types import ConversationMessage


class ScriptedLLM:
    """Pops scripted agent replies and rates every reranking request 8/10."""

    def __init__(self, replies: list[str]) -> None:
        self.replies = list(replies)
        self.agent_calls: list[list[ConversationMessage]] = []
        self.scoring_calls = 0

    def ask(self, messages: list[ConversationMessage]) -> str:
        if messages[0].content == SCORING_SYSTEM_PROMPT:
            self.scoring_calls += 1
            return "8"
        self.agent_calls.append(list(messages))
        return self.replies.pop(0)


def _search_call(query: str) -> str:
    return json.dumps({"tools": [{"name": "search_knowledge_base", "arguments": {"query": query}}]})


def _assistant(tmp_path, llm, *, vectorized: bool = True):
    project = tmp_path / "project"
    (project / "docs").mkdir(parents=True)
    (project / "README.md").write_text("# Demo\n\nA demo project.\n", encoding="utf-8")
    (project / "docs" / "policy.md").write_text(
        "Customer data protection: customer data is encrypted at rest and in transit.\n",
        encoding="utf-8",
    )
    config = AssistantConfig.model_validate(
        {
            "project": {"name": "demo", "path": str(project)},
            "git": {"enabled": False},
            "vectorization": {"enabled": vectorized},
            "rerank": {"min_similarity": 0.1},
            "index": {"cache_path": str(tmp_path / "index.json")},
        }
    )
    return build_assistant(config, llm=llm, embedder=HashingEmbedder() if vectorized else None)


def test_rejected_answer_is_escalated_through_the_reranker(tmp_path) -> None:
    question = "How is customer data protected?"
    llm = ScriptedLLM(
        [
            _search_call(question),
            "Customer data is not protected.",
            _search_call(question),
            "RERANK_REQUIRED",
            "Customer data is encrypted at rest and in transit.",
        ]
    )
    assistant = _assistant(tmp_path, llm)
    session = assistant.sessions.get("s1")

    first = assistant.loop.run(question, session=session)
    assert first.stop_reason == "final_answer"
    assert session.awaiting_rejection is False

    second = assistant.loop.run(
        "That answer is wrong",
        session=session,
        chat_history=[
            ConversationMessage(role="user", content=question),
            ConversationMessage(role="assistant", content=first.answer),
        ],
    )

    assert second.stop_reason == "reranked"
    assert second.answer == "Customer data is encrypted at rest and in transit."
    assert second.sources[0] == "docs/policy.md"
    assert llm.scoring_calls >= 1
    escalation = llm.agent_calls[-1][-1]
    assert escalation.tool_result
    assert f'"{question}"' in escalation.content
    assert "encrypted at rest" in escalation.content
    assert session.last_query == question
    assert len(assistant.trace_store.list_recent()) == 2


def test_escalation_without_vectors_falls_back_to_keyword_search(tmp_path) -> None:
    llm = ScriptedLLM(
        [
            _search_call("customer data"),
            "RERANK_REQUIRED",
            "Customer data is encrypted.",
        ]
    )
    assistant = _assistant(tmp_path, llm, vectorized=False)

    result = assistant.loop.run("customer data", session=assistant.sessions.get(None))

    assert result.stop_reason == "reranked"
    assert result.sources == ["docs/policy.md"]
    assert llm.scoring_calls == 0


def test_tool_call_results_feed_the_final_answer(tmp_path) -> None:
    llm = ScriptedLLM(
        [
            json.dumps({"tool": "read_project_file", "arguments": {"filename": "README.md"}}),
            "It is a demo project.",
        ]
    )
    assistant = _assistant(tmp_path, llm)

    result = assistant.loop.run("What is in the readme?", session=assistant.sessions.get("s2"))

    assert result.stop_reason == "final_answer"
    assert result.iterations == 2
    tool_message = llm.agent_calls[-1][-1]
    assert tool_message.content.startswith("Result of read_project_file:")
    assert "A demo project." in tool_message.content
    assert result.tool_traces[0].name == "read_project_file"
