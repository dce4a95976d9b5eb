from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field

from ..deps import Services, get_services
from ..errors import RecordNotFound
from ..store.sqlite_store import Contact

router = APIRouter(prefix="/contacts", tags=["contacts"])


class ContactIn(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    avatar: Optional[str] = None


class ContactPatch(BaseModel):
    name: Optional[str] = None
    avatar: Optional[str] = None


class MemoryIn(BaseModel):
    text: str = Field(min_length=1)
    memoryType: Optional[str] = None
    priority: int = Field(1, ge=1, le=5)
    dueDate: Optional[str] = None


class EmailIn(BaseModel):
    gmailId: str = Field(min_length=1)
    threadId: str = Field(min_length=1, description="Provider thread id")
    senderEmail: str = Field(min_length=1)
    subject: Optional[str] = None
    recipientEmails: List[str] = Field(default_factory=list)
    ccEmails: List[str] = Field(default_factory=list)
    bccEmails: List[str] = Field(default_factory=list)
    body: Optional[str] = None
    bodyHtml: Optional[str] = None
    snippet: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    receivedAt: Optional[str] = None


class StarIn(BaseModel):
    starred: bool = True


async def _contact_or_404(services: Services, email: str) -> Contact:
    contact = await services.store.find_contact_by_email(email)
    if contact is None:
        raise HTTPException(status_code=404, detail=f"Contact not found: {email}")
    return contact


@router.get("")
async def list_contacts(
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    contacts = await services.store.list_contacts(limit)
    return {"contacts": [c.to_dict() for c in contacts], "count": len(contacts)}


@router.post("", status_code=201)
async def create_contact(payload: ContactIn, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        contact = await services.store.create_contact(str(payload.email), payload.name, payload.avatar)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail=f"Contact already exists: {payload.email}")
    return contact.to_dict()


@router.get("/stats")
async def global_stats(services: Services = Depends(get_services)) -> Dict[str, int]:
    return await services.store.global_stats()


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1, description="Query string"),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    found = await services.store.search_all(q)
    out = {key: [item.to_dict() for item in items] for key, items in found.items()}
    out["contacts"] = [c.to_dict() for c in await services.store.search_contacts(q)]
    return out


@router.get("/{email}")
async def get_contact(email: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    return (await _contact_or_404(services, email)).to_dict()


@router.patch("/{email}")
async def update_contact(email: str, payload: ContactPatch, services: Services = Depends(get_services)) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    updated = await services.store.update_contact(contact.id, name=payload.name, avatar=payload.avatar)
    return updated.to_dict()


@router.delete("/{email}")
async def delete_contact(email: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    await services.store.delete_contact(contact.id)
    return {"ok": True, "deleted": email}


@router.get("/{email}/stats")
async def contact_stats(email: str, services: Services = Depends(get_services)) -> Dict[str, int]:
    contact = await _contact_or_404(services, email)
    return await services.store.contact_stats(contact.id)


@router.get("/{email}/memories")
async def get_memories(
    email: str,
    memory_type: Optional[str] = Query(None, alias="memoryType"),
    is_completed: Optional[bool] = Query(None, alias="isCompleted"),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    memories = await services.store.get_memories_by_contact(
        contact.id, memory_type=memory_type, is_completed=is_completed
    )
    return {"memories": [m.to_dict() for m in memories], "count": len(memories)}


@router.post("/{email}/memories", status_code=201)
async def create_memory(email: str, payload: MemoryIn, services: Services = Depends(get_services)) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    memory = await services.store.create_memory(
        contact.id,
        payload.text,
        memory_type=payload.memoryType,
        priority=payload.priority,
        due_date=payload.dueDate,
    )
    return memory.to_dict()


@router.post("/memories/{memory_id}/complete")
async def complete_memory(memory_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        memory = await services.store.complete_memory(memory_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return memory.to_dict()


@router.post("/{email}/emails", status_code=201)
async def ingest_email(email: str, payload: EmailIn, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """
    Upsert-style ingestion of one provider message for a contact. The provider thread
    is created on first sight and its lastMessageAt moved forward afterwards.
    """
    contact = await _contact_or_404(services, email)
    store = services.store
    if await store.find_email_by_gmail_id(payload.gmailId) is not None:
        raise HTTPException(status_code=409, detail=f"Email already stored: {payload.gmailId}")

    received_at = payload.receivedAt or datetime.now(timezone.utc).isoformat()
    thread = await store.find_thread_by_gmail_id(payload.threadId)
    if thread is None:
        participants = list(dict.fromkeys([payload.senderEmail, *payload.recipientEmails, *payload.ccEmails]))
        thread = await store.create_thread(
            payload.threadId, participants, received_at, subject=payload.subject, labels=payload.labels
        )
    elif received_at > thread.last_message_at:
        await store.update_thread_last_message(thread.id, received_at)

    stored = await store.create_email(
        payload.gmailId,
        payload.senderEmail,
        received_at,
        contact.id,
        thread.id,
        subject=payload.subject,
        recipient_emails=payload.recipientEmails,
        cc_emails=payload.ccEmails,
        bcc_emails=payload.bccEmails,
        body=payload.body,
        body_html=payload.bodyHtml,
        snippet=payload.snippet,
        labels=payload.labels,
    )
    return stored.to_dict()


@router.get("/{email}/emails")
async def list_emails(
    email: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    emails = await services.store.get_emails_by_contact(contact.id, limit=limit)
    return {"emails": [e.to_dict() for e in emails], "count": len(emails)}


@router.get("/{email}/threads")
async def list_threads(
    email: str,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    contact = await _contact_or_404(services, email)
    threads = await services.store.get_threads_by_contact(contact.id, limit=limit)
    return {"threads": [t.to_dict() for t in threads], "count": len(threads)}


@router.post("/emails/{email_id}/read")
async def mark_read(email_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        await services.store.mark_email_read(email_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True, "id": email_id, "isRead": True}


@router.post("/emails/{email_id}/star")
async def mark_starred(email_id: str, payload: StarIn, services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        await services.store.mark_email_starred(email_id, payload.starred)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True, "id": email_id, "isStarred": payload.starred}
