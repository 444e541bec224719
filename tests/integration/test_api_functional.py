import json

from fastapi.testclient import TestClient

from dev_assistant.api.main import build_assistant, create_app
from dev_assistant.config import AssistantConfig
from dev_assistant.errors import LanguageModelError
from dev_assistant.ingest.embedder import HashingEmbedder


class StubLLM:
    """Searches the docs once, then answers from the tool output."""

    def ask(self, messages) -> str:
        last = messages[-1]
        if last.tool_result:
            return "Encrypt customer data at rest.\n\nSources:\n- docs/policy.md"
        return json.dumps(
            {"tools": [{"name": "search_knowledge_base", "arguments": {"query": last.content}}]}
        )


class DownLLM:
    def ask(self, messages) -> str:
        raise LanguageModelError("connection reset")


def _config(tmp_path) -> AssistantConfig:
    project = tmp_path / "project"
    (project / "docs").mkdir(parents=True)
    (project / "README.md").write_text("# Demo\n\nA demo project.\n", encoding="utf-8")
    (project / "docs" / "policy.md").write_text(
        "Company policy: employees must encrypt customer data at rest.\n", encoding="utf-8"
    )
    return AssistantConfig.model_validate(
        {
            "project": {"name": "demo", "path": str(project), "docs": ["README.md", "docs/**"]},
            "git": {"enabled": False},
            "vectorization": {"enabled": True},
            "index": {"cache_path": str(tmp_path / "cache" / "index.json")},
        }
    )


def _client(tmp_path, llm=None) -> TestClient:
    assistant = build_assistant(_config(tmp_path), llm=llm or StubLLM(), embedder=HashingEmbedder())
    return TestClient(create_app(assistant))


def test_api_help_search_docs_and_traces(tmp_path) -> None:
    client = _client(tmp_path)

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["docs_count"] == 2
    assert health["vector_search"] is True
    assert health["git_enabled"] is False

    help_resp = client.get("/help", params={"q": "What does policy require?", "session_id": "s1"})
    assert help_resp.status_code == 200
    payload = help_resp.json()
    assert payload["answer"].startswith("Encrypt customer data")
    assert "docs/policy.md" in payload["sources"]
    assert payload["stop_reason"] == "final_answer"
    assert payload["session_id"] == "s1"

    trace = client.get(f"/traces/{payload['trace_id']}")
    assert trace.status_code == 200
    assert trace.json()["tool_traces"][0]["name"] == "search_knowledge_base"
    assert client.get("/traces").json()["items"]
    assert client.get("/metrics").json()["total_requests"] == 1
    assert client.get("/traces/unknown").status_code == 404

    search = client.get("/search", params={"q": "encrypt customer data", "limit": 1})
    assert search.status_code == 200
    assert search.json()["sources"] == ["docs/policy.md"]
    assert search.json()["mode"] == "vector"


def test_api_docs_tools_and_reindex(tmp_path) -> None:
    client = _client(tmp_path)

    docs = client.get("/docs").json()
    assert docs["count"] == 2
    assert {doc["path"] for doc in docs["documents"]} == {"README.md", "docs/policy.md"}

    document = client.get("/docs/docs/policy.md")
    assert document.status_code == 200
    assert document.json()["lineCount"] == 1
    assert client.get("/docs/missing.md").status_code == 404

    tools = client.get("/tools").json()
    names = {tool["name"] for tool in tools["tools"]}
    assert {"search_knowledge_base", "rerank_search", "read_project_file", "reindex_documents"} <= names
    assert not any(name.startswith("git_") for name in names)
    assert "inputSchema" in tools["tools"][0]

    reindex = client.post("/reindex")
    assert reindex.status_code == 200
    assert reindex.json()["documents"] == 2
    assert reindex.json()["vectorized"] is True


def test_api_error_responses(tmp_path) -> None:
    client = _client(tmp_path, llm=DownLLM())

    assert client.get("/help").status_code == 400

    down = client.get("/help", params={"q": "anything"})
    assert down.status_code == 502
    assert down.json()["error"] == "model_unavailable"

    none = client.get("/search", params={"q": "a an"})
    assert none.status_code == 404
    assert none.json()["error"] == "nothing_found"

    assert client.get("/search", params={"q": "encrypt", "limit": -1}).status_code == 422
    assert client.get("/search", params={"q": "encrypt", "limit": 0}).status_code == 422

    assert client.get("/git/info").status_code == 404
