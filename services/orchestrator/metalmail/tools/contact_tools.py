"""
Contact and memory tools over the ContactStore.

Store failures never become protocol errors here: each tool renders them as a
single "❌" text block so the caller always gets a readable result.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Awaitable, Callable, Optional

from pydantic import EmailStr, Field

from ..errors import MetalmailError
from ..protocol.envelope import ActionEnvelope
from ..schemas import CamelModel
from ..store.sqlite_store import ContactStore
from .registry import READ_ONLY, ToolAnnotations, ToolDescriptor, ToolRegistry


logger = logging.getLogger(__name__)


class ContactEmailInput(CamelModel):
    email: EmailStr = Field(description="Contact email address")


class CreateContactInput(ContactEmailInput):
    name: Optional[str] = None
    avatar: Optional[str] = None


class UpdateContactInput(ContactEmailInput):
    name: Optional[str] = None
    avatar: Optional[str] = None


class ListContactsInput(CamelModel):
    limit: int = Field(100, ge=1, le=1000)


class SearchContactsInput(CamelModel):
    query: str = Field(min_length=1)
    email: Optional[EmailStr] = Field(None, description="Restrict email/memory matches to this contact")


class CreateMemoryInput(ContactEmailInput):
    text: str = Field(min_length=1)
    memory_type: Optional[str] = None
    priority: int = Field(1, ge=1, le=5)
    due_date: Optional[str] = None
    email_id: Optional[str] = None
    thread_id: Optional[str] = None


class GetMemoriesInput(ContactEmailInput):
    memory_type: Optional[str] = None
    is_completed: Optional[bool] = None
    limit: int = Field(50, ge=1, le=100)


class MemoryIdInput(CamelModel):
    memory_id: str = Field(min_length=1)


class UpdateMemoryInput(MemoryIdInput):
    text: Optional[str] = None
    memory_type: Optional[str] = None
    priority: Optional[int] = Field(None, ge=1, le=5)
    is_completed: Optional[bool] = None
    due_date: Optional[str] = None


class NoInput(CamelModel):
    pass


def _pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _guard(verb: str, fn: Callable[[Any], Awaitable[ActionEnvelope]]) -> Callable[[Any], Awaitable[ActionEnvelope]]:
    async def wrapper(params: Any) -> ActionEnvelope:
        try:
            return await fn(params)
        except (MetalmailError, sqlite3.Error) as e:
            logger.warning("[contacts] error %s: %s", verb, e)
            return ActionEnvelope.text(f"❌ Error {verb}: {e}")

    return wrapper


def register_contact_tools(registry: ToolRegistry, store: ContactStore) -> None:
    async def not_found(email: str) -> ActionEnvelope:
        return ActionEnvelope.text(f"❌ Contact not found: {email}")

    async def create_contact(p: CreateContactInput) -> ActionEnvelope:
        contact = await store.create_contact(str(p.email), p.name, p.avatar)
        return ActionEnvelope.text(f"✅ Contact created successfully!\n\n{_pretty(contact.to_dict())}")

    async def get_contact(p: ContactEmailInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        result = contact.to_dict()
        result["emails"] = [e.to_dict() for e in (await store.get_emails_by_contact(contact.id, limit=10))]
        result["memories"] = [m.to_dict() for m in (await store.get_memories_by_contact(contact.id))[:10]]
        return ActionEnvelope.text(f"✅ Contact found!\n\n{_pretty(result)}")

    async def list_contacts(p: ListContactsInput) -> ActionEnvelope:
        contacts = await store.list_contacts(p.limit)
        return ActionEnvelope.text(
            f"✅ Found {len(contacts)} contacts:\n\n{_pretty([c.to_dict() for c in contacts])}"
        )

    async def update_contact(p: UpdateContactInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        updated = await store.update_contact(contact.id, name=p.name, avatar=p.avatar)
        return ActionEnvelope.text(f"✅ Contact updated successfully!\n\n{_pretty(updated.to_dict())}")

    async def delete_contact(p: ContactEmailInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        await store.delete_contact(contact.id)
        return ActionEnvelope.text(f"✅ Contact deleted successfully: {p.email}")

    async def search_contacts(p: SearchContactsInput) -> ActionEnvelope:
        contact_id = None
        if p.email:
            contact = await store.find_contact_by_email(str(p.email))
            if contact is None:
                return await not_found(str(p.email))
            contact_id = contact.id
        contacts = await store.search_contacts(p.query)
        found = await store.search_all(p.query, contact_id)
        result = {
            "contacts": [c.to_dict() for c in contacts],
            **{key: [item.to_dict() for item in items] for key, items in found.items()},
        }
        total = sum(len(v) for v in result.values())
        return ActionEnvelope.text(f'✅ Found {total} results for "{p.query}":\n\n{_pretty(result)}')

    async def create_memory(p: CreateMemoryInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        memory = await store.create_memory(
            contact.id,
            p.text,
            memory_type=p.memory_type,
            priority=p.priority,
            due_date=p.due_date,
            email_id=p.email_id,
            thread_id=p.thread_id,
        )
        return ActionEnvelope.text(f"✅ Memory created successfully!\n\n{_pretty(memory.to_dict())}")

    async def get_memories(p: GetMemoriesInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        memories = await store.get_memories_by_contact(
            contact.id, memory_type=p.memory_type, is_completed=p.is_completed
        )
        limited = [m.to_dict() for m in memories[: p.limit]]
        return ActionEnvelope.text(f"✅ Found {len(limited)} memories:\n\n{_pretty(limited)}")

    async def update_memory(p: UpdateMemoryInput) -> ActionEnvelope:
        memory = await store.update_memory(
            p.memory_id,
            text=p.text,
            memory_type=p.memory_type,
            priority=p.priority,
            is_completed=p.is_completed,
            due_date=p.due_date,
        )
        return ActionEnvelope.text(f"✅ Memory updated successfully!\n\n{_pretty(memory.to_dict())}")

    async def complete_memory(p: MemoryIdInput) -> ActionEnvelope:
        memory = await store.complete_memory(p.memory_id)
        return ActionEnvelope.text(f"✅ Memory marked as completed!\n\n{_pretty(memory.to_dict())}")

    async def delete_memory(p: MemoryIdInput) -> ActionEnvelope:
        await store.delete_memory(p.memory_id)
        return ActionEnvelope.text(f"✅ Memory deleted successfully: {p.memory_id}")

    async def get_contact_stats(p: ContactEmailInput) -> ActionEnvelope:
        contact = await store.find_contact_by_email(str(p.email))
        if contact is None:
            return await not_found(str(p.email))
        stats = await store.contact_stats(contact.id)
        return ActionEnvelope.text(f"✅ Contact stats for {p.email}:\n\n{_pretty(stats)}")

    async def get_global_stats(_p: NoInput) -> ActionEnvelope:
        stats = await store.global_stats()
        return ActionEnvelope.text(f"✅ Global database stats:\n\n{_pretty(stats)}")

    writes = ToolAnnotations()
    idempotent_write = ToolAnnotations(idempotent=True)
    tools = [
        ("createContact", "Create Contact", "Create a new contact in the database",
         CreateContactInput, writes, "creating contact", create_contact),
        ("getContact", "Get Contact", "Get contact details by email address",
         ContactEmailInput, READ_ONLY, "getting contact", get_contact),
        ("listContacts", "List Contacts", "Get a list of all contacts",
         ListContactsInput, READ_ONLY, "listing contacts", list_contacts),
        ("updateContact", "Update Contact", "Update contact information",
         UpdateContactInput, idempotent_write, "updating contact", update_contact),
        ("deleteContact", "Delete Contact", "Delete a contact and all associated data",
         ContactEmailInput, ToolAnnotations(idempotent=True, destructive=True), "deleting contact", delete_contact),
        ("searchContacts", "Search Contacts", "Search contacts, emails, threads and memories by free text",
         SearchContactsInput, READ_ONLY, "searching contacts", search_contacts),
        ("createMemory", "Create Memory", "Create a memory for a contact",
         CreateMemoryInput, writes, "creating memory", create_memory),
        ("getMemories", "Get Memories", "Get memories for a contact",
         GetMemoriesInput, READ_ONLY, "getting memories", get_memories),
        ("updateMemory", "Update Memory", "Update a memory's text, type, priority, due date or completion",
         UpdateMemoryInput, idempotent_write, "updating memory", update_memory),
        ("completeMemory", "Complete Memory", "Mark a memory as completed",
         MemoryIdInput, idempotent_write, "completing memory", complete_memory),
        ("deleteMemory", "Delete Memory", "Delete a memory",
         MemoryIdInput, ToolAnnotations(idempotent=True, destructive=True), "deleting memory", delete_memory),
        ("getContactStats", "Get Contact Stats", "Get statistics for a specific contact",
         ContactEmailInput, READ_ONLY, "getting contact stats", get_contact_stats),
        ("getGlobalStats", "Get Global Stats", "Get global database statistics",
         NoInput, READ_ONLY, "getting global stats", get_global_stats),
    ]
    for name, title, description, model, annotations, verb, handler in tools:
        registry.register(
            ToolDescriptor(name=name, title=title, description=description, input_model=model, annotations=annotations),
            _guard(verb, handler),
        )
