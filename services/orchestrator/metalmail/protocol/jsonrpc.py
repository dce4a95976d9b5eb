"""
JSON-RPC 2.0 envelope helpers for the tool invocation protocol.
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict


PROTOCOL_VERSION = "2024-11-05"

INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = Optional[Union[int, str]]


class RpcRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = "2.0"
    id: RequestId = None
    method: str
    params: Dict[str, Any] = {}


def result(request_id: RequestId, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": payload}


def error(request_id: RequestId, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": err}
