"""
MCP Routes - JSON-RPC 2.0 tool protocol over HTTP (initialize, tools/list, tools/call)
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from .. import __version__
from ..deps import Services, get_services
from ..errors import ToolExecutionError, ToolNotFound, ValidationError
from ..protocol import jsonrpc
from ..tools.registry import ToolDescriptor


logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])

SERVER_NAME = "metalmail"


def tool_listing(descriptor: ToolDescriptor) -> Dict[str, Any]:
    return {
        "name": descriptor.name,
        "title": descriptor.title or descriptor.name,
        "description": descriptor.description,
        "inputSchema": descriptor.parameter_schema,
        "annotations": descriptor.annotations.to_hints(),
    }


def map_call_arguments(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the plain-string ``emailContent`` shorthand for the email tools."""
    content = arguments.get("emailContent")
    if not isinstance(content, str):
        return arguments
    if name == "summarizeEmail":
        return {"text": content}
    if name == "draftReply":
        mapped: Dict[str, Any] = {"email": content}
        if arguments.get("tone"):
            mapped["tone"] = arguments["tone"]
        return mapped
    if name == "analyzeEmail":
        email: Dict[str, Any] = {
            "subject": arguments.get("subject") or "No Subject",
            "sender": arguments.get("sender") or "unknown@example.com",
            "body": content,
        }
        if arguments.get("bodyHtml"):
            email["bodyHtml"] = arguments["bodyHtml"]
        return {"emailContent": email}
    return arguments


async def handle_rpc(services: Services, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        req = jsonrpc.RpcRequest.model_validate(payload)
    except PydanticValidationError:
        return jsonrpc.error(payload.get("id"), jsonrpc.INVALID_REQUEST, "Invalid Request")

    if req.method == "initialize":
        return jsonrpc.result(
            req.id,
            {
                "protocolVersion": jsonrpc.PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": __version__},
            },
        )

    if req.method == "tools/list":
        return jsonrpc.result(req.id, {"tools": [tool_listing(d) for d in services.registry.descriptors()]})

    if req.method == "tools/call":
        name = req.params.get("name")
        if not isinstance(name, str) or not name:
            return jsonrpc.error(req.id, jsonrpc.INVALID_PARAMS, "Missing tool name")
        arguments = req.params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return jsonrpc.error(req.id, jsonrpc.INVALID_PARAMS, "arguments must be an object")
        try:
            envelope = await services.registry.invoke(name, map_call_arguments(name, arguments))
        except ToolNotFound as e:
            return jsonrpc.error(req.id, jsonrpc.METHOD_NOT_FOUND, str(e))
        except ValidationError as e:
            return jsonrpc.error(req.id, jsonrpc.INVALID_PARAMS, str(e), {"fields": e.fields})
        except ToolExecutionError as e:
            return jsonrpc.error(req.id, jsonrpc.INTERNAL_ERROR, f"Error calling tool {e.tool}: {e.message}")
        return jsonrpc.result(req.id, envelope.dump())

    return jsonrpc.error(req.id, jsonrpc.METHOD_NOT_FOUND, f"Method not found: {req.method}")


@router.post("/mcp")
async def mcp_endpoint(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)) -> Any:
    if payload.get("jsonrpc") != "2.0":
        return JSONResponse(
            status_code=400,
            content=jsonrpc.error(None, jsonrpc.INVALID_REQUEST, "Invalid Request"),
        )
    try:
        return await handle_rpc(services, payload)
    except Exception as e:
        logger.exception("[mcp] request failed")
        return JSONResponse(
            status_code=500,
            content=jsonrpc.error(payload.get("id"), jsonrpc.INTERNAL_ERROR, "Internal error", str(e)),
        )
