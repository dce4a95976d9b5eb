"""
Shared fixtures: a scripted LLM gateway and service wiring over a temp database.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from metalmail.config import Persona, Settings
from metalmail.deps import Services, wire_services
from metalmail.llm.gateway import FunctionCall, LLMDelta, LLMReply
from metalmail.store.sqlite_store import ContactStore


class FakeGateway:
    """
    Stands in for LLMGateway. Each call pops the next scripted answer:
      completions: str (or Exception to raise) for complete()
      replies:     LLMReply for chat()
      streams:     list of LLMDelta for chat_stream()
    """

    def __init__(
        self,
        completions: Optional[List[Any]] = None,
        replies: Optional[List[LLMReply]] = None,
        streams: Optional[List[List[LLMDelta]]] = None,
    ):
        self.completions = list(completions or [])
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.prompts: List[str] = []
        self.chat_calls: List[List[Dict[str, Any]]] = []
        self.persona = Persona.default()

    def system_prompt(self, extras: Optional[str] = None) -> str:
        return self.persona.render_system(extras)

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        item = self.completions.pop(0) if self.completions else ""
        if isinstance(item, Exception):
            raise item
        return item

    async def chat(self, messages, functions=None) -> LLMReply:
        self.chat_calls.append(list(messages))
        return self.replies.pop(0) if self.replies else LLMReply(content="")

    async def chat_stream(self, messages, functions=None) -> AsyncIterator[LLMDelta]:
        self.chat_calls.append(list(messages))
        for delta in self.streams.pop(0) if self.streams else []:
            yield delta
        yield LLMDelta(done=True)


def call(name: str, arguments: str = "{}") -> LLMReply:
    return LLMReply(content="", function_call=FunctionCall(name=name, arguments=arguments))


def make_services(gateway: FakeGateway, db_path: Any, **overrides: Any) -> Services:
    settings = Settings(db_path=str(db_path), **overrides)
    return wire_services(settings, gateway, ContactStore(db_path))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store(tmp_path) -> ContactStore:
    return ContactStore(tmp_path / "metalmail.db")
