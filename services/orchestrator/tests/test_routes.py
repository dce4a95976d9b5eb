"""
HTTP surface tests: /chat, /chat/stream, /mcp, /contacts
"""

import json
from typing import List

from conftest import FakeGateway, call, make_services
from fastapi.testclient import TestClient

from metalmail.llm.gateway import LLMDelta, LLMReply
from metalmail.main import create_app

THREAD_CONTEXT = {
    "selectedEmailId": "123",
    "threadEmails": [
        {
            "id": "123",
            "subject": "Meeting",
            "sender": "john@example.com",
            "time": "10:00",
            "body": "Can we meet Tuesday?",
            "messageIndex": 0,
        }
    ],
}


def client_for(gateway: FakeGateway, tmp_path, **overrides) -> TestClient:
    return TestClient(create_app(make_services(gateway, tmp_path / "routes.db", **overrides)))


def sse_events(text: str) -> List[dict]:
    events = []
    for chunk in text.split("\n\n"):
        if chunk.startswith("data: "):
            events.append(json.loads(chunk[len("data: "):]))
    return events


def rpc(method: str, params=None, request_id=1) -> dict:
    body = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    return body


class TestChatRoute:
    def test_prompt_required(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)

        assert client.post("/chat", json={}).status_code == 400
        assert client.post("/chat", json={"prompt": "   "}).status_code == 400
        assert client.post("/chat/stream", json={}).status_code == 400

    def test_chat_answer_with_metadata(self, tmp_path):
        client = client_for(FakeGateway(replies=[LLMReply(content="Hi!")]), tmp_path)

        res = client.post(
            "/chat",
            json={
                "prompt": "hello",
                "context": {"emailId": "abc", "currentDraft": ""},
                "conversationHistory": [{"role": "user", "content": "earlier"}],
            },
        )
        data = res.json()

        assert res.status_code == 200
        assert data["success"] is True
        assert data["response"] == "Hi!"
        assert data["contextProvided"] == "Yes"
        assert data["emailId"] == "abc"
        assert data["hasCurrentDraft"] is False
        assert data["conversationHistoryLength"] == 1
        assert data["toolsUsed"] == []

    def test_draft_reply_scenario(self, tmp_path):
        structured = {"subject": "Re: Meeting", "sender": "me@example.com", "body": "Tuesday works."}
        gateway = FakeGateway(completions=[json.dumps(structured)])
        client = client_for(gateway, tmp_path)

        data = client.post("/chat", json={"prompt": "draft reply", "context": THREAD_CONTEXT}).json()

        assert data["shouldPerformAction"] is True
        assert data["actionToPerform"]["action"] == "draftReply"
        assert data["actionToPerform"]["parameters"]["email"]["body"] == "Tuesday works."
        assert data["debuggingInfo"]["toolsList"] == ["draftReply"]

    def test_tool_error_reported_in_body(self, tmp_path):
        client = client_for(FakeGateway(replies=[call("missingTool")]), tmp_path)

        data = client.post("/chat", json={"prompt": "do something"}).json()

        assert data["success"] is False
        assert data["toolsUsed"][-1]["success"] is False
        assert data["toolsUsed"][-1]["error"]
        assert "missingTool" in data["response"]

    def test_provider_failure_is_500(self, tmp_path):
        class Down(FakeGateway):
            async def chat(self, messages, functions=None):
                raise RuntimeError("connection refused")

        client = client_for(Down(), tmp_path)
        res = client.post("/chat", json={"prompt": "hello"})

        assert res.status_code == 500
        assert res.json() == {"error": "Failed to process chat request", "details": "connection refused"}


class TestChatStreamRoute:
    def test_stream_events(self, tmp_path):
        gateway = FakeGateway(streams=[[LLMDelta(content="Hel"), LLMDelta(content="lo")]])
        client = client_for(gateway, tmp_path)

        res = client.post("/chat/stream", json={"prompt": "hi"})
        events = sse_events(res.text)

        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/event-stream")
        assert events[0]["type"] == "metadata"
        assert events[-1] == {"type": "done", "data": None}
        assert "".join(e["data"] for e in events if e["type"] == "content") == "Hello"

    def test_stream_and_chat_agree_on_action(self, tmp_path):
        gateway = FakeGateway(completions=["- one", "- one"])
        client = client_for(gateway, tmp_path)
        body = {"prompt": "summarize", "context": THREAD_CONTEXT}

        plain = client.post("/chat", json=body).json()
        events = sse_events(client.post("/chat/stream", json=body).text)
        action = [e for e in events if e["type"] == "action_protocol"][0]["data"]

        assert action["actionToPerform"] == plain["actionToPerform"]
        assert action["response"] == plain["response"]

    def test_stream_error_then_done(self, tmp_path):
        class Down(FakeGateway):
            async def chat_stream(self, messages, functions=None):
                raise RuntimeError("provider unavailable")
                yield  # pragma: no cover

        events = sse_events(client_for(Down(), tmp_path).post("/chat/stream", json={"prompt": "hi"}).text)

        assert [e["type"] for e in events] == ["metadata", "error", "done"]


class TestMcpRoute:
    def setup_method(self):
        self.gateway = FakeGateway()

    def test_initialize(self, tmp_path):
        data = client_for(self.gateway, tmp_path).post("/mcp", json=rpc("initialize")).json()

        assert data["id"] == 1
        assert data["result"]["protocolVersion"] == "2024-11-05"
        assert data["result"]["capabilities"] == {"tools": {}}
        assert data["result"]["serverInfo"]["name"] == "metalmail"

    def test_tools_list(self, tmp_path):
        data = client_for(self.gateway, tmp_path).post("/mcp", json=rpc("tools/list")).json()
        tools = {t["name"]: t for t in data["result"]["tools"]}

        assert {"summarizeEmail", "draftReply", "rewriteReply", "analyzeEmail", "intelligentChat"} <= set(tools)
        assert {"createContact", "getMemories", "getGlobalStats"} <= set(tools)
        assert tools["analyzeEmail"]["inputSchema"]["type"] == "object"
        assert tools["deleteContact"]["annotations"]["destructiveHint"] is True

    def test_tools_call_with_string_shorthand(self, tmp_path):
        self.gateway.completions.append("- bullet")
        client = client_for(self.gateway, tmp_path)

        data = client.post(
            "/mcp", json=rpc("tools/call", {"name": "summarizeEmail", "arguments": {"emailContent": "Long email"}})
        ).json()

        result = data["result"]
        assert result["shouldPerformAction"] is True
        assert result["actionToPerform"]["parameters"]["originalText"] == "Long email"
        assert result["content"][0]["type"] == "text"

    def test_analyze_shorthand_defaults(self, tmp_path):
        self.gateway.completions.append("not json")
        client = client_for(self.gateway, tmp_path)

        data = client.post(
            "/mcp", json=rpc("tools/call", {"name": "analyzeEmail", "arguments": {"emailContent": "hello"}})
        ).json()

        email = data["result"]["actionToPerform"]["parameters"]["emailContent"]
        assert email["subject"] == "No Subject"
        assert email["sender"] == "unknown@example.com"

    def test_unknown_tool(self, tmp_path):
        data = client_for(self.gateway, tmp_path).post(
            "/mcp", json=rpc("tools/call", {"name": "nope", "arguments": {}})
        ).json()

        assert data["error"]["code"] == -32601

    def test_invalid_params(self, tmp_path):
        data = client_for(self.gateway, tmp_path).post(
            "/mcp", json=rpc("tools/call", {"name": "rewriteReply", "arguments": {"draft": "x"}})
        ).json()

        assert data["error"]["code"] == -32602
        assert "instruction" in data["error"]["data"]["fields"]

    def test_tool_execution_error(self, tmp_path):
        self.gateway.completions.append(RuntimeError("LLM down"))
        data = client_for(self.gateway, tmp_path).post(
            "/mcp", json=rpc("tools/call", {"name": "summarizeEmail", "arguments": {"text": "x"}})
        ).json()

        assert data["error"]["code"] == -32603
        assert data["error"]["message"] == "Error calling tool summarizeEmail: LLM down"

    def test_unknown_method(self, tmp_path):
        data = client_for(self.gateway, tmp_path).post("/mcp", json=rpc("resources/list")).json()
        assert data["error"]["code"] == -32601

    def test_wrong_jsonrpc_version(self, tmp_path):
        res = client_for(self.gateway, tmp_path).post("/mcp", json={"jsonrpc": "1.0", "id": 7, "method": "initialize"})

        assert res.status_code == 400
        assert res.json()["error"]["code"] == -32600
        assert res.json()["id"] is None


class TestContactRoutes:
    def test_contact_crud(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)

        created = client.post("/contacts", json={"email": "john@example.com", "name": "John"})
        assert created.status_code == 201
        assert client.post("/contacts", json={"email": "john@example.com"}).status_code == 409

        assert client.get("/contacts/john@example.com").json()["name"] == "John"
        assert client.patch("/contacts/john@example.com", json={"name": "Johnny"}).json()["name"] == "Johnny"
        assert client.get("/contacts").json()["count"] == 1
        assert client.get("/contacts/stats").json()["totalContacts"] == 1

        assert client.delete("/contacts/john@example.com").json() == {"ok": True, "deleted": "john@example.com"}
        assert client.get("/contacts/john@example.com").status_code == 404

    def test_memories(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)
        client.post("/contacts", json={"email": "john@example.com"})

        memory = client.post(
            "/contacts/john@example.com/memories", json={"text": "Send the deck", "memoryType": "task"}
        ).json()
        done = client.post(f"/contacts/memories/{memory['id']}/complete").json()
        listed = client.get("/contacts/john@example.com/memories", params={"isCompleted": "true"}).json()

        assert done["isCompleted"] is True
        assert listed["count"] == 1
        assert client.get("/contacts/john@example.com/stats").json()["completedMemories"] == 1
        assert client.post("/contacts/memories/missing/complete").status_code == 404

    def test_email_ingestion_feeds_search_and_stats(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)
        client.post("/contacts", json={"email": "john@example.com", "name": "John"})
        message = {
            "gmailId": "m1",
            "threadId": "t1",
            "senderEmail": "john@example.com",
            "recipientEmails": ["me@example.com"],
            "subject": "Quarterly report",
            "body": "Numbers attached",
            "receivedAt": "2024-01-01T10:00:00+00:00",
        }

        stored = client.post("/contacts/john@example.com/emails", json=message)
        followup = client.post(
            "/contacts/john@example.com/emails",
            json=dict(message, gmailId="m2", receivedAt="2024-01-02T10:00:00+00:00"),
        )

        assert stored.status_code == 201
        assert followup.status_code == 201
        assert client.post("/contacts/john@example.com/emails", json=message).status_code == 409

        threads = client.get("/contacts/john@example.com/threads").json()["threads"]
        assert len(threads) == 1
        assert threads[0]["participants"] == ["john@example.com", "me@example.com"]
        assert threads[0]["lastMessageAt"] == "2024-01-02T10:00:00+00:00"
        assert client.get("/contacts/john@example.com/emails").json()["count"] == 2

        email_id = stored.json()["id"]
        assert client.post(f"/contacts/emails/{email_id}/read").json()["isRead"] is True
        assert client.post(f"/contacts/emails/{email_id}/star", json={"starred": True}).json()["isStarred"] is True
        assert client.post("/contacts/emails/missing/read").status_code == 404

        stats = client.get("/contacts/john@example.com/stats").json()
        assert stats["totalEmails"] == 2
        assert stats["unreadEmails"] == 1
        assert stats["starredEmails"] == 1

        found = client.get("/contacts/search", params={"q": "quarterly"}).json()
        assert len(found["emails"]) == 2
        assert len(found["threads"]) == 1

    def test_search(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)
        client.post("/contacts", json={"email": "amy@example.com", "name": "Amy"})

        data = client.get("/contacts/search", params={"q": "amy"}).json()

        assert [c["email"] for c in data["contacts"]] == ["amy@example.com"]
        assert data["emails"] == [] and data["memories"] == []


class TestAppRoutes:
    def test_status_and_health(self, tmp_path):
        client = client_for(FakeGateway(), tmp_path)

        status = client.get("/").json()
        health = client.get("/health").json()

        assert status["status"] == "running"
        assert "intelligentChat" in status["tools"]
        assert health == {"ok": True, "database": "ok"}
