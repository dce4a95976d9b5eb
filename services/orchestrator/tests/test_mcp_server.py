"""
Tests for the stdio MCP server: tool translation and tools/call handling
"""

import asyncio
import json

import mcp.types as types
import pytest
from conftest import FakeGateway, make_services
from mcp.shared.exceptions import McpError

from metalmail.mcp_server import MetalmailMCPServer, to_mcp_tool


class TestMcpServer:
    def test_tool_translation(self, tmp_path):
        services = make_services(FakeGateway(), tmp_path / "mcp.db")
        tool = to_mcp_tool(services.registry.get("deleteMemory"))

        assert tool.name == "deleteMemory"
        assert tool.inputSchema["required"] == ["memoryId"]
        assert tool.annotations.destructiveHint is True
        assert tool.annotations.readOnlyHint is False

    def test_every_tool_translates(self, tmp_path):
        services = make_services(FakeGateway(), tmp_path / "mcp.db")
        server = MetalmailMCPServer(services)

        tools = [to_mcp_tool(d) for d in server.services.registry.descriptors()]

        assert len(tools) == len(services.registry.names())
        assert all(t.inputSchema["type"] == "object" for t in tools)


class TestMcpCallTool:
    def setup_method(self):
        self.gateway = FakeGateway()

    def server(self, tmp_path) -> MetalmailMCPServer:
        return MetalmailMCPServer(make_services(self.gateway, tmp_path / "mcp.db"))

    def test_action_tool_appends_envelope_block(self, tmp_path):
        self.gateway.completions.append("- bullet")

        blocks = asyncio.run(self.server(tmp_path).call_tool("summarizeEmail", {"emailContent": "Long email"}))

        assert [b.type for b in blocks] == ["text", "text"]
        assert blocks[0].text == "I've summarized the email for you."
        envelope = json.loads(blocks[-1].text)
        assert envelope["shouldPerformAction"] is True
        assert envelope["actionToPerform"]["parameters"]["originalText"] == "Long email"

    def test_contact_tool_is_plain_text(self, tmp_path):
        blocks = asyncio.run(
            self.server(tmp_path).call_tool("createContact", {"email": "john@example.com", "name": "John"})
        )

        assert len(blocks) == 1
        assert blocks[0].text.startswith("✅ Contact created successfully!")

    def test_unknown_tool_is_protocol_error(self, tmp_path):
        with pytest.raises(McpError) as exc:
            asyncio.run(self.server(tmp_path).call_tool("missingTool", {}))

        assert exc.value.error.code == types.METHOD_NOT_FOUND
        assert exc.value.error.message == "Unknown tool: missingTool"

    def test_invalid_arguments_are_protocol_error(self, tmp_path):
        with pytest.raises(McpError) as exc:
            asyncio.run(self.server(tmp_path).call_tool("deleteMemory", None))

        assert exc.value.error.code == types.INVALID_PARAMS
        assert exc.value.error.message.startswith("Invalid arguments for deleteMemory")

    def test_failing_tool_answers_with_error_text(self, tmp_path):
        self.gateway.completions.append(RuntimeError("provider down"))

        blocks = asyncio.run(self.server(tmp_path).call_tool("summarizeEmail", {"text": "Long email"}))

        assert [b.text for b in blocks] == ["Error: provider down"]
