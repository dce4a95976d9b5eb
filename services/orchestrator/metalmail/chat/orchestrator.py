"""
Chat orchestrator: one chat turn, with and without streaming.

    route -> deterministic tool?  -> execute -> done
          -> LLM with functions   -> no call    -> done
                                  -> call       -> execute -> action envelope -> done
                                                           -> plain result    -> re-prompt (bounded)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from ..errors import MetalmailError, ToolExecutionError, ToolLoopExceeded
from ..llm.gateway import FunctionCall, LLMGateway
from ..protocol.envelope import ActionEnvelope, ActionToPerform, SuggestedAction
from ..schemas import ChatContext, ChatRequest
from ..tools.registry import ToolRegistry
from ..tools.structured import extract_suggested_actions
from .dispatcher import Dispatcher
from .prompts import build_messages, function_result_messages


logger = logging.getLogger(__name__)

# Tools the LLM may not call from inside the loop (would re-enter the dispatcher).
LOOP_EXCLUDED_TOOLS = {"intelligentChat"}


@dataclass
class ToolExecutionRecord:
    name: str
    arguments: Dict[str, Any]
    timestamp: str
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"name": self.name, "arguments": self.arguments, "timestamp": self.timestamp, "success": self.success}
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class DebuggingInfo:
    tools_executed: int
    tools_list: List[str]
    execution_summary: str
    loop_exceeded: bool = False

    @staticmethod
    def from_records(records: List[ToolExecutionRecord], loop_exceeded: bool = False) -> "DebuggingInfo":
        names: List[str] = []
        for r in records:
            if r.name not in names:
                names.append(r.name)
        summary = ", ".join(f"{r.name}{'✅' if r.success else '❌'}" for r in records)
        return DebuggingInfo(len(records), names, summary, loop_exceeded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toolsExecuted": self.tools_executed,
            "toolsList": self.tools_list,
            "executionSummary": self.execution_summary,
            "loopExceeded": self.loop_exceeded,
        }


@dataclass
class ChatOutcome:
    success: bool
    response: str
    should_perform_action: Optional[bool] = None
    action_to_perform: Optional[ActionToPerform] = None
    suggested_actions: Optional[List[SuggestedAction]] = None
    tools_used: List[ToolExecutionRecord] = field(default_factory=list)
    loop_exceeded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "response": self.response}
        if self.should_perform_action is not None:
            out["shouldPerformAction"] = self.should_perform_action
        if self.action_to_perform is not None:
            out["actionToPerform"] = self.action_to_perform.dump()
        if self.suggested_actions is not None:
            out["suggestedActions"] = [s.dump() for s in self.suggested_actions]
        out["toolsUsed"] = [r.to_dict() for r in self.tools_used]
        out["debuggingInfo"] = DebuggingInfo.from_records(self.tools_used, self.loop_exceeded).to_dict()
        return out


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatOrchestrator:
    def __init__(
        self,
        registry: ToolRegistry,
        gateway: LLMGateway,
        dispatcher: Dispatcher,
        max_tool_rounds: int = 3,
        tool_timeout: float = 60.0,
    ):
        self.registry = registry
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.max_tool_rounds = max(1, max_tool_rounds)
        self.tool_timeout = tool_timeout

    def functions(self) -> List[Dict[str, Any]]:
        names = [n for n in self.registry.names() if n not in LOOP_EXCLUDED_TOOLS]
        return self.registry.as_functions(names)

    async def _execute(
        self, name: str, arguments: Dict[str, Any], records: List[ToolExecutionRecord]
    ) -> ActionEnvelope:
        record = ToolExecutionRecord(name=name, arguments=arguments, timestamp=_now())
        records.append(record)
        try:
            return await asyncio.wait_for(self.registry.invoke(name, arguments), timeout=self.tool_timeout)
        except asyncio.TimeoutError as e:
            record.success = False
            record.error = f"timed out after {self.tool_timeout:g}s"
            raise ToolExecutionError(name, record.error, e) from e
        except MetalmailError as e:
            record.success = False
            record.error = str(e) or e.__class__.__name__
            logger.warning("[orchestrator] tool %s failed: %s", name, record.error)
            if isinstance(e, ToolExecutionError):
                raise
            raise ToolExecutionError(name, record.error, e) from e

    @staticmethod
    def _tool_failure(e: ToolExecutionError, records: List[ToolExecutionRecord]) -> ChatOutcome:
        return ChatOutcome(success=False, response=f"Error calling tool {e.tool}: {e.message}", tools_used=records)

    def _loop_exceeded(self, records: List[ToolExecutionRecord]) -> ChatOutcome:
        err = ToolLoopExceeded(self.max_tool_rounds)
        logger.warning("[orchestrator] %s", err)
        return ChatOutcome(success=False, response=str(err), tools_used=records, loop_exceeded=True)

    @staticmethod
    def _from_envelope(env: ActionEnvelope, records: List[ToolExecutionRecord]) -> ChatOutcome:
        return ChatOutcome(
            success=True,
            response=env.text_content,
            should_perform_action=env.should_perform_action,
            action_to_perform=env.action_to_perform,
            suggested_actions=env.suggested_actions,
            tools_used=records,
        )

    @staticmethod
    def _from_text(text: str, records: List[ToolExecutionRecord]) -> ChatOutcome:
        suggestions = extract_suggested_actions(text)
        return ChatOutcome(
            success=True,
            response=text,
            should_perform_action=False if suggestions is not None else None,
            suggested_actions=suggestions,
            tools_used=records,
        )

    def _messages(self, request: ChatRequest) -> List[Dict[str, Any]]:
        return build_messages(request.prompt or "", request.context, request.history(), self.gateway.system_prompt)

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def run(self, request: ChatRequest) -> ChatOutcome:
        prompt = request.prompt or ""
        records: List[ToolExecutionRecord] = []

        route = self.dispatcher.route(prompt, request.context or ChatContext())
        if route.tool is not None:
            try:
                env = await self._execute(route.tool, route.arguments, records)
            except ToolExecutionError as e:
                return self._tool_failure(e, records)
            return self._from_envelope(env, records)

        messages = self._messages(request)
        functions = self.functions()
        for round_no in range(self.max_tool_rounds + 1):
            reply = await self.gateway.chat(messages, functions)
            call = reply.function_call
            if call is None:
                return self._from_text(reply.content, records)
            if round_no == self.max_tool_rounds:
                return self._loop_exceeded(records)

            logger.info("[orchestrator] round %d: LLM called %s", round_no + 1, call.name)
            try:
                env = await self._execute(call.name, call.parsed_arguments(), records)
            except ToolExecutionError as e:
                return self._tool_failure(e, records)
            if env.should_perform_action:
                return self._from_envelope(env, records)
            messages += function_result_messages(call.name, call.arguments, env.to_text())

        return self._loop_exceeded(records)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, request: ChatRequest) -> AsyncIterator[Dict[str, Any]]:
        """Yield {"type", "data"} events; the last one is always {"type": "done"}."""
        prompt = request.prompt or ""
        records: List[ToolExecutionRecord] = []
        yield {
            "type": "metadata",
            "data": {
                "prompt": prompt,
                "contextProvided": "Yes" if request.context is not None else "No",
                "toolsAvailable": self.registry.names(),
            },
        }
        try:
            async for event in self._stream_turn(request, prompt, records):
                yield event
        except Exception as e:
            logger.exception("[orchestrator] stream failed")
            yield {"type": "error", "data": {"error": str(e) or e.__class__.__name__}}
        yield {"type": "done", "data": None}

    async def _stream_turn(
        self, request: ChatRequest, prompt: str, records: List[ToolExecutionRecord]
    ) -> AsyncIterator[Dict[str, Any]]:
        route = self.dispatcher.route(prompt, request.context or ChatContext())
        if route.tool is not None:
            yield {"type": "function_call_start", "data": {"name": route.tool}}
            yield {"type": "function_call_complete", "data": {"name": route.tool, "arguments": route.arguments}}
            try:
                env = await self._execute(route.tool, route.arguments, records)
            except ToolExecutionError as e:
                yield {"type": "error", "data": self._tool_failure(e, records).to_dict()}
                return
            yield {"type": "action_protocol", "data": self._from_envelope(env, records).to_dict()}
            return

        messages = self._messages(request)
        functions = self.functions()
        for round_no in range(self.max_tool_rounds + 1):
            text_parts: List[str] = []
            name: Optional[str] = None
            arg_parts: List[str] = []
            async for delta in self.gateway.chat_stream(messages, functions):
                if delta.done:
                    break
                if delta.content:
                    text_parts.append(delta.content)
                    yield {"type": "content", "data": delta.content}
                if delta.function_name and name is None:
                    name = delta.function_name
                    yield {"type": "function_call_start", "data": {"name": name}}
                if delta.function_arguments:
                    arg_parts.append(delta.function_arguments)
                    yield {"type": "function_call_chunk", "data": {"arguments": delta.function_arguments}}

            if name is None:
                yield {"type": "complete", "data": self._from_text("".join(text_parts), records).to_dict()}
                return
            if round_no == self.max_tool_rounds:
                yield {"type": "complete", "data": self._loop_exceeded(records).to_dict()}
                return

            arguments = "".join(arg_parts)
            call = FunctionCall(name=name, arguments=arguments)
            parsed = call.parsed_arguments()
            yield {"type": "function_call_complete", "data": {"name": name, "arguments": parsed}}
            try:
                env = await self._execute(name, parsed, records)
            except ToolExecutionError as e:
                yield {"type": "error", "data": self._tool_failure(e, records).to_dict()}
                return
            if env.should_perform_action:
                yield {"type": "action_protocol", "data": self._from_envelope(env, records).to_dict()}
                return
            messages += function_result_messages(name, arguments, env.to_text())
