from ..llm.gateway import LLMGateway
from ..store.sqlite_store import ContactStore
from .contact_tools import register_contact_tools
from .email_tools import register_email_tools
from .registry import ToolAnnotations, ToolDescriptor, ToolRegistry


def build_registry(gateway: LLMGateway, store: ContactStore) -> ToolRegistry:
    """Register the email and contact tools. The caller adds intelligentChat, then freezes."""
    registry = ToolRegistry()
    register_email_tools(registry, gateway)
    register_contact_tools(registry, store)
    return registry


__all__ = ["ToolAnnotations", "ToolDescriptor", "ToolRegistry", "build_registry"]
