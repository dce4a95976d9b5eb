"""
Tests for the OpenAI-compatible client and the LLM gateway (httpx MockTransport, no network)
"""

import asyncio
import json

import httpx

from metalmail.llm.gateway import FunctionCall, LLMGateway
from metalmail.llm.openai_client import OpenAICompatClient


def client_with(handler) -> OpenAICompatClient:
    client = OpenAICompatClient("https://llm.test/", api_key="sk-test")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def sse_body(*chunks) -> bytes:
    lines = [f"data: {json.dumps(c)}" for c in chunks] + ["data: [DONE]"]
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


class TestOpenAICompatClient:
    def test_chat_sends_functions_and_returns_message(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            message = {"role": "assistant", "content": None, "function_call": {"name": "getGlobalStats", "arguments": "{}"}}
            return httpx.Response(200, json={"choices": [{"message": message}]})

        gateway = LLMGateway(client_with(handler), "test-model")
        reply = asyncio.run(gateway.chat([{"role": "user", "content": "hi"}], [{"name": "getGlobalStats"}]))

        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["body"]["function_call"] == "auto"
        assert seen["body"]["model"] == "test-model"
        assert reply.content == ""
        assert reply.function_call == FunctionCall(name="getGlobalStats", arguments="{}")

    def test_complete_prepends_system_prompt(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        text = asyncio.run(LLMGateway(client_with(handler), "m").complete("Summarize"))

        assert text == "ok"
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
        assert "functions" not in seen["body"]

    def test_stream_yields_content_and_function_fragments(self):
        body = sse_body(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [{"delta": {"function_call": {"name": "summarizeEmail"}}}]},
            {"choices": [{"delta": {"function_call": {"arguments": '{"text": "x"}'}}}]},
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        async def collect():
            gateway = LLMGateway(client_with(handler), "m")
            return [d async for d in gateway.chat_stream([{"role": "user", "content": "hi"}])]

        deltas = asyncio.run(collect())

        assert [d.content for d in deltas if d.content] == ["Hel", "lo"]
        assert [d.function_name for d in deltas if d.function_name] == ["summarizeEmail"]
        assert [d.function_arguments for d in deltas if d.function_arguments] == ['{"text": "x"}']
        assert deltas[-1].done is True

    def test_http_error_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "unavailable"})

        gateway = LLMGateway(client_with(handler), "m")
        try:
            asyncio.run(gateway.complete("hi"))
        except httpx.HTTPStatusError as e:
            assert e.response.status_code == 503
        else:
            raise AssertionError("Expected HTTPStatusError")


class TestFunctionCall:
    def test_parsed_arguments(self):
        assert FunctionCall("x", '{"a": 1}').parsed_arguments() == {"a": 1}
        assert FunctionCall("x", "").parsed_arguments() == {}
        assert FunctionCall("x", "{not json").parsed_arguments() == {}
        assert FunctionCall("x", "[1]").parsed_arguments() == {}
