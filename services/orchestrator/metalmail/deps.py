from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .chat.dispatcher import Dispatcher, register_intelligent_chat
from .chat.orchestrator import ChatOrchestrator
from .config import Persona, Settings
from .llm.gateway import LLMGateway
from .llm.openai_client import OpenAICompatClient
from .store.sqlite_store import ContactStore
from .tools import build_registry
from .tools.registry import ToolRegistry


@dataclass
class Services:
    """Everything a request handler needs, built once per app and kept on ``app.state``."""

    settings: Settings
    gateway: LLMGateway
    store: ContactStore
    registry: ToolRegistry
    dispatcher: Dispatcher
    orchestrator: ChatOrchestrator

    async def aclose(self) -> None:
        await self.store.close()
        client = getattr(self.gateway, "client", None)
        if isinstance(client, OpenAICompatClient):
            await client.aclose()


def wire_services(settings: Settings, gateway: LLMGateway, store: ContactStore) -> Services:
    registry = build_registry(gateway, store)
    dispatcher = Dispatcher(registry, gateway)
    register_intelligent_chat(registry, dispatcher)
    registry.freeze()
    orchestrator = ChatOrchestrator(
        registry,
        gateway,
        dispatcher,
        max_tool_rounds=settings.max_tool_rounds,
        tool_timeout=settings.tool_timeout,
    )
    return Services(settings, gateway, store, registry, dispatcher, orchestrator)


def build_services(settings: Settings) -> Services:
    client = OpenAICompatClient(settings.openai_base_url, settings.openai_api_key, timeout=settings.llm_timeout)
    gateway = LLMGateway(
        client,
        settings.openai_model,
        timeout=settings.llm_timeout,
        persona=Persona.load(settings.persona_path),
    )
    return wire_services(settings, gateway, ContactStore(settings.db_path))


def get_services(request: Request) -> Services:
    return request.app.state.services
