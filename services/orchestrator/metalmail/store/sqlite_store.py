from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import RecordNotFound


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    avatar TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS threads (
    id TEXT PRIMARY KEY,
    gmail_thread_id TEXT NOT NULL UNIQUE,
    subject TEXT,
    last_message_at TEXT NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 1,
    is_read INTEGER NOT NULL DEFAULT 0,
    is_starred INTEGER NOT NULL DEFAULT 0,
    labels TEXT NOT NULL DEFAULT '[]',
    participants TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS emails (
    id TEXT PRIMARY KEY,
    gmail_id TEXT NOT NULL UNIQUE,
    subject TEXT,
    sender_email TEXT NOT NULL,
    recipient_emails TEXT NOT NULL DEFAULT '[]',
    cc_emails TEXT NOT NULL DEFAULT '[]',
    bcc_emails TEXT NOT NULL DEFAULT '[]',
    body TEXT,
    body_html TEXT,
    snippet TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    is_starred INTEGER NOT NULL DEFAULT 0,
    labels TEXT NOT NULL DEFAULT '[]',
    received_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    contact_id TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
    thread_id TEXT NOT NULL REFERENCES threads(id) ON DELETE CASCADE
);
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    memory_type TEXT,
    priority INTEGER NOT NULL DEFAULT 1,
    is_completed INTEGER NOT NULL DEFAULT 0,
    due_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    contact_id TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
    email_id TEXT REFERENCES emails(id) ON DELETE SET NULL,
    thread_id TEXT REFERENCES threads(id) ON DELETE SET NULL
);
CREATE INDEX IF NOT EXISTS emails_contact_idx ON emails(contact_id);
CREATE INDEX IF NOT EXISTS emails_thread_idx ON emails(thread_id);
CREATE INDEX IF NOT EXISTS memories_contact_idx ON memories(contact_id);
"""


_KINDS = {"contacts": "Contact", "emails": "Email", "threads": "Thread", "memories": "Memory"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Union[str, datetime, None]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


class _Record:
    def to_dict(self) -> Dict[str, Any]:
        return {_camel(k): v for k, v in asdict(self).items()}


@dataclass
class Contact(_Record):
    id: str
    email: str
    name: Optional[str]
    avatar: Optional[str]
    created_at: str
    updated_at: str
    email_count: int = 0
    memory_count: int = 0


@dataclass
class Email(_Record):
    id: str
    gmail_id: str
    subject: Optional[str]
    sender_email: str
    recipient_emails: List[str]
    cc_emails: List[str]
    bcc_emails: List[str]
    body: Optional[str]
    body_html: Optional[str]
    snippet: Optional[str]
    is_read: bool
    is_starred: bool
    labels: List[str]
    received_at: str
    contact_id: str
    thread_id: str


@dataclass
class Thread(_Record):
    id: str
    gmail_thread_id: str
    subject: Optional[str]
    last_message_at: str
    message_count: int
    is_read: bool
    is_starred: bool
    labels: List[str] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)


@dataclass
class Memory(_Record):
    id: str
    text: str
    memory_type: Optional[str]
    priority: int
    is_completed: bool
    due_date: Optional[str]
    created_at: str
    contact_id: str
    email_id: Optional[str] = None
    thread_id: Optional[str] = None


class ContactStore:
    """
    SQLite-backed persistence for contacts, emails, threads and per-contact memories.
    Methods are async so callers can await them alongside LLM calls; each one is a
    short synchronous query on a single connection.
    """

    def __init__(self, db_path: Union[str, Path] = "metalmail.db"):
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def health_check(self) -> bool:
        try:
            self._db().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error("[store] health check failed: %s", e)
            return False

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _contact(row: sqlite3.Row) -> Contact:
        keys = row.keys()
        return Contact(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            avatar=row["avatar"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            email_count=row["email_count"] if "email_count" in keys else 0,
            memory_count=row["memory_count"] if "memory_count" in keys else 0,
        )

    @staticmethod
    def _email(row: sqlite3.Row) -> Email:
        return Email(
            id=row["id"],
            gmail_id=row["gmail_id"],
            subject=row["subject"],
            sender_email=row["sender_email"],
            recipient_emails=json.loads(row["recipient_emails"]),
            cc_emails=json.loads(row["cc_emails"]),
            bcc_emails=json.loads(row["bcc_emails"]),
            body=row["body"],
            body_html=row["body_html"],
            snippet=row["snippet"],
            is_read=bool(row["is_read"]),
            is_starred=bool(row["is_starred"]),
            labels=json.loads(row["labels"]),
            received_at=row["received_at"],
            contact_id=row["contact_id"],
            thread_id=row["thread_id"],
        )

    @staticmethod
    def _thread(row: sqlite3.Row) -> Thread:
        return Thread(
            id=row["id"],
            gmail_thread_id=row["gmail_thread_id"],
            subject=row["subject"],
            last_message_at=row["last_message_at"],
            message_count=row["message_count"],
            is_read=bool(row["is_read"]),
            is_starred=bool(row["is_starred"]),
            labels=json.loads(row["labels"]),
            participants=json.loads(row["participants"]),
        )

    @staticmethod
    def _memory(row: sqlite3.Row) -> Memory:
        return Memory(
            id=row["id"],
            text=row["text"],
            memory_type=row["memory_type"],
            priority=row["priority"],
            is_completed=bool(row["is_completed"]),
            due_date=row["due_date"],
            created_at=row["created_at"],
            contact_id=row["contact_id"],
            email_id=row["email_id"],
            thread_id=row["thread_id"],
        )

    def _update(self, table: str, record_id: str, values: Dict[str, Any]) -> None:
        values = dict(values, updated_at=_now())
        assignments = ", ".join(f"{col} = ?" for col in values)
        cur = self._db().execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*values.values(), record_id),
        )
        self._db().commit()
        if cur.rowcount == 0:
            raise RecordNotFound(_KINDS[table], record_id)

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def create_contact(self, email: str, name: Optional[str] = None, avatar: Optional[str] = None) -> Contact:
        now = _now()
        contact_id = uuid.uuid4().hex
        self._db().execute(
            "INSERT INTO contacts(id, email, name, avatar, created_at, updated_at) VALUES(?,?,?,?,?,?)",
            (contact_id, email, name, avatar, now, now),
        )
        self._db().commit()
        logger.info("[store] created contact %s", email)
        return Contact(id=contact_id, email=email, name=name, avatar=avatar, created_at=now, updated_at=now)

    async def find_contact_by_email(self, email: str) -> Optional[Contact]:
        row = self._db().execute("SELECT * FROM contacts WHERE email = ?", (email,)).fetchone()
        return self._contact(row) if row else None

    async def find_contact_by_id(self, contact_id: str) -> Optional[Contact]:
        row = self._db().execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
        return self._contact(row) if row else None

    async def list_contacts(self, limit: int = 100) -> List[Contact]:
        rows = self._db().execute(
            """
            SELECT c.*,
                   (SELECT COUNT(*) FROM emails e WHERE e.contact_id = c.id) AS email_count,
                   (SELECT COUNT(*) FROM memories m WHERE m.contact_id = c.id) AS memory_count
            FROM contacts c
            ORDER BY c.name COLLATE NOCASE ASC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [self._contact(r) for r in rows]

    async def update_contact(self, contact_id: str, name: Optional[str] = None, avatar: Optional[str] = None) -> Contact:
        values = {k: v for k, v in (("name", name), ("avatar", avatar)) if v is not None}
        self._update("contacts", contact_id, values)
        contact = await self.find_contact_by_id(contact_id)
        assert contact is not None
        return contact

    async def delete_contact(self, contact_id: str) -> Contact:
        contact = await self.find_contact_by_id(contact_id)
        if contact is None:
            raise RecordNotFound("Contact", contact_id)
        self._db().execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
        self._db().commit()
        logger.info("[store] deleted contact %s", contact.email)
        return contact

    # ------------------------------------------------------------------
    # Emails
    # ------------------------------------------------------------------

    async def create_email(
        self,
        gmail_id: str,
        sender_email: str,
        received_at: Union[str, datetime],
        contact_id: str,
        thread_id: str,
        subject: Optional[str] = None,
        recipient_emails: Optional[List[str]] = None,
        cc_emails: Optional[List[str]] = None,
        bcc_emails: Optional[List[str]] = None,
        body: Optional[str] = None,
        body_html: Optional[str] = None,
        snippet: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Email:
        now = _now()
        email = Email(
            id=uuid.uuid4().hex,
            gmail_id=gmail_id,
            subject=subject,
            sender_email=sender_email,
            recipient_emails=list(recipient_emails or []),
            cc_emails=list(cc_emails or []),
            bcc_emails=list(bcc_emails or []),
            body=body,
            body_html=body_html,
            snippet=snippet,
            is_read=False,
            is_starred=False,
            labels=list(labels or []),
            received_at=_iso(received_at) or now,
            contact_id=contact_id,
            thread_id=thread_id,
        )
        self._db().execute(
            """
            INSERT INTO emails(id, gmail_id, subject, sender_email, recipient_emails, cc_emails, bcc_emails,
                               body, body_html, snippet, labels, received_at, created_at, updated_at,
                               contact_id, thread_id)
            VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                email.id, gmail_id, subject, sender_email,
                json.dumps(email.recipient_emails), json.dumps(email.cc_emails), json.dumps(email.bcc_emails),
                body, body_html, snippet, json.dumps(email.labels), email.received_at, now, now,
                contact_id, thread_id,
            ),
        )
        self._db().commit()
        return email

    async def find_email_by_gmail_id(self, gmail_id: str) -> Optional[Email]:
        row = self._db().execute("SELECT * FROM emails WHERE gmail_id = ?", (gmail_id,)).fetchone()
        return self._email(row) if row else None

    async def get_emails_by_contact(self, contact_id: str, limit: int = 50) -> List[Email]:
        rows = self._db().execute(
            "SELECT * FROM emails WHERE contact_id = ? ORDER BY received_at DESC LIMIT ?",
            (contact_id, limit),
        ).fetchall()
        return [self._email(r) for r in rows]

    async def search_emails(self, query: str, contact_id: Optional[str] = None) -> List[Email]:
        like = f"%{query}%"
        sql = (
            "SELECT * FROM emails WHERE (subject LIKE ? OR body LIKE ? OR sender_email LIKE ? OR snippet LIKE ?)"
        )
        params: List[Any] = [like, like, like, like]
        if contact_id:
            sql += " AND contact_id = ?"
            params.append(contact_id)
        sql += " ORDER BY received_at DESC"
        return [self._email(r) for r in self._db().execute(sql, params).fetchall()]

    async def mark_email_read(self, email_id: str) -> None:
        self._update("emails", email_id, {"is_read": 1})

    async def mark_email_starred(self, email_id: str, starred: bool) -> None:
        self._update("emails", email_id, {"is_starred": int(starred)})

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def create_thread(
        self,
        gmail_thread_id: str,
        participants: List[str],
        last_message_at: Union[str, datetime],
        subject: Optional[str] = None,
        message_count: int = 1,
        labels: Optional[List[str]] = None,
    ) -> Thread:
        now = _now()
        thread = Thread(
            id=uuid.uuid4().hex,
            gmail_thread_id=gmail_thread_id,
            subject=subject,
            last_message_at=_iso(last_message_at) or now,
            message_count=message_count or 1,
            is_read=False,
            is_starred=False,
            labels=list(labels or []),
            participants=list(participants),
        )
        self._db().execute(
            """
            INSERT INTO threads(id, gmail_thread_id, subject, last_message_at, message_count,
                                labels, participants, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (
                thread.id, gmail_thread_id, subject, thread.last_message_at, thread.message_count,
                json.dumps(thread.labels), json.dumps(thread.participants), now, now,
            ),
        )
        self._db().commit()
        return thread

    async def find_thread_by_gmail_id(self, gmail_thread_id: str) -> Optional[Thread]:
        row = self._db().execute(
            "SELECT * FROM threads WHERE gmail_thread_id = ?", (gmail_thread_id,)
        ).fetchone()
        return self._thread(row) if row else None

    async def get_threads_by_contact(self, contact_id: str, limit: int = 50) -> List[Thread]:
        rows = self._db().execute(
            """
            SELECT DISTINCT t.* FROM threads t
            JOIN emails e ON e.thread_id = t.id
            WHERE e.contact_id = ?
            ORDER BY t.last_message_at DESC
            LIMIT ?
            """,
            (contact_id, limit),
        ).fetchall()
        return [self._thread(r) for r in rows]

    async def update_thread_last_message(self, thread_id: str, last_message_at: Union[str, datetime]) -> None:
        self._update("threads", thread_id, {"last_message_at": _iso(last_message_at)})

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def create_memory(
        self,
        contact_id: str,
        text: str,
        memory_type: Optional[str] = None,
        priority: int = 1,
        due_date: Union[str, datetime, None] = None,
        email_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> Memory:
        now = _now()
        memory = Memory(
            id=uuid.uuid4().hex,
            text=text,
            memory_type=memory_type,
            priority=priority or 1,
            is_completed=False,
            due_date=_iso(due_date),
            created_at=now,
            contact_id=contact_id,
            email_id=email_id,
            thread_id=thread_id,
        )
        self._db().execute(
            """
            INSERT INTO memories(id, text, memory_type, priority, due_date, created_at, updated_at,
                                 contact_id, email_id, thread_id)
            VALUES(?,?,?,?,?,?,?,?,?,?)
            """,
            (
                memory.id, text, memory_type, memory.priority, memory.due_date, now, now,
                contact_id, email_id, thread_id,
            ),
        )
        self._db().commit()
        return memory

    async def find_memory(self, memory_id: str) -> Optional[Memory]:
        row = self._db().execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return self._memory(row) if row else None

    async def get_memories_by_contact(
        self,
        contact_id: str,
        email_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        memory_type: Optional[str] = None,
        is_completed: Optional[bool] = None,
    ) -> List[Memory]:
        sql = "SELECT * FROM memories WHERE contact_id = ?"
        params: List[Any] = [contact_id]
        for column, value in (("email_id", email_id), ("thread_id", thread_id), ("memory_type", memory_type)):
            if value:
                sql += f" AND {column} = ?"
                params.append(value)
        if is_completed is not None:
            sql += " AND is_completed = ?"
            params.append(int(is_completed))
        # rowid breaks ties between memories created within the same timestamp
        sql += " ORDER BY created_at DESC, rowid DESC"
        return [self._memory(r) for r in self._db().execute(sql, params).fetchall()]

    async def update_memory(
        self,
        memory_id: str,
        text: Optional[str] = None,
        memory_type: Optional[str] = None,
        priority: Optional[int] = None,
        is_completed: Optional[bool] = None,
        due_date: Union[str, datetime, None] = None,
    ) -> Memory:
        values: Dict[str, Any] = {}
        if text is not None:
            values["text"] = text
        if memory_type is not None:
            values["memory_type"] = memory_type
        if priority is not None:
            values["priority"] = priority
        if is_completed is not None:
            values["is_completed"] = int(is_completed)
        if due_date is not None:
            values["due_date"] = _iso(due_date)
        self._update("memories", memory_id, values)
        memory = await self.find_memory(memory_id)
        assert memory is not None
        return memory

    async def complete_memory(self, memory_id: str) -> Memory:
        return await self.update_memory(memory_id, is_completed=True)

    async def delete_memory(self, memory_id: str) -> Memory:
        memory = await self.find_memory(memory_id)
        if memory is None:
            raise RecordNotFound("Memory", memory_id)
        self._db().execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        self._db().commit()
        return memory

    # ------------------------------------------------------------------
    # Analytics / search
    # ------------------------------------------------------------------

    def _count(self, sql: str, params: tuple = ()) -> int:
        return int(self._db().execute(sql, params).fetchone()[0])

    async def contact_stats(self, contact_id: str) -> Dict[str, int]:
        return {
            "totalEmails": self._count("SELECT COUNT(*) FROM emails WHERE contact_id = ?", (contact_id,)),
            "unreadEmails": self._count(
                "SELECT COUNT(*) FROM emails WHERE contact_id = ? AND is_read = 0", (contact_id,)
            ),
            "starredEmails": self._count(
                "SELECT COUNT(*) FROM emails WHERE contact_id = ? AND is_starred = 1", (contact_id,)
            ),
            "totalMemories": self._count("SELECT COUNT(*) FROM memories WHERE contact_id = ?", (contact_id,)),
            "completedMemories": self._count(
                "SELECT COUNT(*) FROM memories WHERE contact_id = ? AND is_completed = 1", (contact_id,)
            ),
        }

    async def global_stats(self) -> Dict[str, int]:
        return {
            "totalContacts": self._count("SELECT COUNT(*) FROM contacts"),
            "totalEmails": self._count("SELECT COUNT(*) FROM emails"),
            "totalThreads": self._count("SELECT COUNT(*) FROM threads"),
            "totalMemories": self._count("SELECT COUNT(*) FROM memories"),
        }

    async def search_contacts(self, query: str, limit: int = 20) -> List[Contact]:
        like = f"%{query}%"
        rows = self._db().execute(
            "SELECT * FROM contacts WHERE email LIKE ? OR name LIKE ? ORDER BY name COLLATE NOCASE LIMIT ?",
            (like, like, limit),
        ).fetchall()
        return [self._contact(r) for r in rows]

    async def search_all(self, query: str, contact_id: Optional[str] = None) -> Dict[str, List[Any]]:
        like = f"%{query}%"
        emails = await self.search_emails(query, contact_id)

        thread_sql = "SELECT DISTINCT t.* FROM threads t"
        thread_params: List[Any] = []
        if contact_id:
            thread_sql += " JOIN emails e ON e.thread_id = t.id AND e.contact_id = ?"
            thread_params.append(contact_id)
        thread_sql += " WHERE (t.subject LIKE ? OR t.participants LIKE ?) ORDER BY t.last_message_at DESC"
        thread_params.extend([like, like])
        threads = [self._thread(r) for r in self._db().execute(thread_sql, thread_params).fetchall()]

        memory_sql = "SELECT * FROM memories WHERE text LIKE ?"
        memory_params: List[Any] = [like]
        if contact_id:
            memory_sql += " AND contact_id = ?"
            memory_params.append(contact_id)
        memory_sql += " ORDER BY created_at DESC"
        memories = [self._memory(r) for r in self._db().execute(memory_sql, memory_params).fetchall()]

        return {"emails": emails, "threads": threads, "memories": memories}
