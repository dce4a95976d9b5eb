"""
LLM Gateway: the only place the rest of the service talks to a language model.

Wraps an OpenAI-compatible client with a system persona and per-call timeouts,
and normalizes replies into small value types the orchestrator can branch on.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from ..config import Persona
from .openai_client import OpenAICompatClient


logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> Dict[str, Any]:
        if not self.arguments.strip():
            return {}
        try:
            data = json.loads(self.arguments)
        except json.JSONDecodeError:
            logger.warning("[llm] function_call arguments for %s are not valid JSON", self.name)
            return {}
        return data if isinstance(data, dict) else {}


@dataclass
class LLMReply:
    content: str = ""
    function_call: Optional[FunctionCall] = None


@dataclass
class LLMDelta:
    content: Optional[str] = None
    function_name: Optional[str] = None
    function_arguments: Optional[str] = None
    done: bool = False


class LLMGateway:
    def __init__(
        self,
        client: OpenAICompatClient,
        model: str,
        timeout: float = 60.0,
        persona: Optional[Persona] = None,
        temperature: Optional[float] = 0.7,
    ):
        self.client = client
        self.model = model
        self.timeout = timeout
        self.persona = persona or Persona.default()
        self.temperature = temperature

    def system_prompt(self, extras: Optional[str] = None) -> str:
        return self.persona.render_system(extras)

    async def complete(self, prompt: str) -> str:
        """Send one prompt, return the text of the reply."""
        messages = [
            {"role": "system", "content": self.system_prompt()},
            {"role": "user", "content": prompt},
        ]
        reply = await self.chat(messages)
        return reply.content

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        functions: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMReply:
        message = await asyncio.wait_for(
            self.client.chat(self.model, messages, functions=functions, temperature=self.temperature),
            timeout=self.timeout,
        )
        fc = message.get("function_call")
        call = None
        if isinstance(fc, dict) and fc.get("name"):
            call = FunctionCall(name=fc["name"], arguments=fc.get("arguments") or "")
        return LLMReply(content=message.get("content") or "", function_call=call)

    async def chat_stream(
        self,
        messages: List[Dict[str, Any]],
        functions: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[LLMDelta]:
        """Yield deltas as they arrive; each chunk must arrive within the call timeout."""
        stream = self.client.chat_stream(self.model, messages, functions=functions, temperature=self.temperature)
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    break
                if chunk.get("done"):
                    yield LLMDelta(done=True)
                    break
                if "content" in chunk:
                    yield LLMDelta(content=chunk["content"])
                fc = chunk.get("function_call")
                if fc:
                    yield LLMDelta(function_name=fc.get("name"), function_arguments=fc.get("arguments"))
        finally:
            await stream.aclose()
