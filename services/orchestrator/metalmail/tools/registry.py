"""
Tool registry: named operations with a declared input model, annotations and an async handler.

Tools are registered once while the app is being built; after ``freeze()`` the set is
immutable. ``invoke`` validates arguments against the tool's pydantic model before the
handler runs and never retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import MetalmailError, ToolExecutionError, ToolNotFound, ValidationError
from ..protocol.envelope import ActionEnvelope


logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[ActionEnvelope]]


@dataclass(frozen=True)
class ToolAnnotations:
    read_only: bool = False
    idempotent: bool = False
    destructive: bool = False
    open_world: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "readOnly": self.read_only,
            "idempotent": self.idempotent,
            "destructive": self.destructive,
            "openWorld": self.open_world,
        }

    def to_hints(self) -> Dict[str, bool]:
        """MCP-style hint names."""
        return {
            "readOnlyHint": self.read_only,
            "idempotentHint": self.idempotent,
            "destructiveHint": self.destructive,
            "openWorldHint": self.open_world,
        }


READ_ONLY = ToolAnnotations(read_only=True, idempotent=True)


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_model: Type[BaseModel]
    annotations: ToolAnnotations = field(default_factory=ToolAnnotations)
    title: Optional[str] = None

    @property
    def parameter_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return schema

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title or self.name,
            "description": self.description,
            "parameterSchema": self.parameter_schema,
            "annotations": self.annotations.to_dict(),
        }

    def to_function(self) -> Dict[str, Any]:
        """OpenAI function-calling declaration."""
        return {"name": self.name, "description": self.description, "parameters": self.parameter_schema}


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._handlers: Dict[str, Handler] = {}
        self._frozen = False

    def register(self, descriptor: ToolDescriptor, handler: Handler) -> None:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen; cannot register {descriptor.name}")
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFound(name) from None

    def descriptors(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def as_functions(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        tools = self.descriptors() if names is None else [self.get(n) for n in names]
        return [t.to_function() for t in tools]

    def validate(self, name: str, args: Optional[Dict[str, Any]]) -> BaseModel:
        descriptor = self.get(name)
        try:
            return descriptor.input_model.model_validate(args or {})
        except PydanticValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) or "input" for err in e.errors()]
            messages = "; ".join(err["msg"] for err in e.errors())
            raise ValidationError(name, fields, messages) from None

    async def invoke(self, name: str, args: Optional[Dict[str, Any]] = None) -> ActionEnvelope:
        params = self.validate(name, args)
        logger.info("[registry] invoking %s", name)
        try:
            return await self._handlers[name](params)
        except MetalmailError:
            raise
        except Exception as e:
            logger.exception("[registry] tool %s failed", name)
            raise ToolExecutionError(name, str(e) or e.__class__.__name__, e) from e
