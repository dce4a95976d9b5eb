from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


Priority = Literal["low", "medium", "high"]
Category = Literal["work", "personal", "marketing", "notification", "other"]
Sentiment = Literal["positive", "neutral", "negative"]
Tone = Literal[
    "professional",
    "casual",
    "formal",
    "urgent",
    "friendly",
    "polite",
    "aggressive",
    "apologetic",
    "neutral",
]

PRIORITIES: List[str] = ["low", "medium", "high"]
CATEGORIES: List[str] = ["work", "personal", "marketing", "notification", "other"]
SENTIMENTS: List[str] = ["positive", "neutral", "negative"]
TONES: List[str] = [
    "professional",
    "casual",
    "formal",
    "urgent",
    "friendly",
    "polite",
    "aggressive",
    "apologetic",
    "neutral",
]


class CamelModel(BaseModel):
    """Accepts camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Chat request / context
# ---------------------------------------------------------------------------


class Message(CamelModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str = ""


class DraftRecipients(CamelModel):
    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)


class DraftObject(CamelModel):
    subject: Optional[str] = None
    sender: Optional[str] = None
    recipients: Optional[DraftRecipients] = None
    body: str = ""
    body_html: Optional[str] = None


class UserPreferences(CamelModel):
    tone: Optional[Literal["professional", "casual", "formal"]] = None
    length: Optional[Literal["brief", "detailed"]] = None


class ThreadEmail(CamelModel):
    id: str
    subject: str = ""
    sender: str = ""
    time: str = ""
    body: str = ""
    message_index: int = 0


class ChatContext(CamelModel):
    email_thread: Optional[str] = None
    email_id: Optional[str] = None
    current_draft: Optional[Union[str, DraftObject]] = None
    user_preferences: Optional[UserPreferences] = None
    conversation_history: List[Message] = Field(default_factory=list)
    selected_email_id: Optional[str] = None
    thread_emails: List[ThreadEmail] = Field(default_factory=list)
    user_email: Optional[str] = None

    def has_draft(self) -> bool:
        return bool(self.draft_text())

    def draft_text(self) -> Optional[str]:
        draft = self.current_draft
        if draft is None:
            return None
        if isinstance(draft, DraftObject):
            return draft.body or None
        return draft if draft.strip() else None

    def selected_email(self) -> Optional[ThreadEmail]:
        if not self.selected_email_id:
            return None
        for email in self.thread_emails:
            if email.id == self.selected_email_id:
                return email
        return None


class ChatRequest(CamelModel):
    prompt: Optional[str] = None
    context: Optional[ChatContext] = None
    conversation_history: List[Message] = Field(default_factory=list)

    def history(self) -> List[Message]:
        """Top-level history wins; otherwise fall back to the history carried in the context."""
        if self.conversation_history:
            return list(self.conversation_history)
        if self.context is not None:
            return list(self.context.conversation_history)
        return []


# ---------------------------------------------------------------------------
# Email content / analysis
# ---------------------------------------------------------------------------


class Recipients(CamelModel):
    to: List[EmailStr] = Field(default_factory=list)
    cc: List[EmailStr] = Field(default_factory=list)
    bcc: List[EmailStr] = Field(default_factory=list)


class EmailContent(CamelModel):
    subject: str = Field(min_length=1)
    sender: EmailStr
    recipients: Optional[Recipients] = None
    body: str = ""
    body_html: Optional[str] = None

    @model_validator(mode="after")
    def _require_body(self) -> "EmailContent":
        if not self.body.strip() and not (self.body_html or "").strip():
            raise ValueError("Email body is required")
        return self


class StructuredEmail(CamelModel):
    """Shape the LLM is asked to emit for draftReply / rewriteReply."""

    subject: str
    sender: str
    recipients: DraftRecipients = Field(default_factory=DraftRecipients)
    body: str
    body_html: Optional[str] = None

    def dump(self) -> Dict[str, Any]:
        # bodyHtml is part of the contract even when null.
        return self.model_dump(by_alias=True)


class AnalysisResult(CamelModel):
    summary: str
    main_points: List[str] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list)
    priority: Priority = "low"
    category: Category = "other"
    sentiment: Sentiment = "neutral"
    tone: Tone = "neutral"

    @staticmethod
    def coerce(data: Dict[str, Any]) -> "AnalysisResult":
        """Build a result from loose LLM output, replacing out-of-enum values with neutral defaults."""

        def pick(value: Any, allowed: List[str], default: str) -> str:
            if isinstance(value, str) and value.strip().lower() in allowed:
                return value.strip().lower()
            return default

        def strings(value: Any) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(v) for v in value if v is not None]

        summary = data.get("summary")
        return AnalysisResult(
            summary=summary if isinstance(summary, str) and summary.strip() else "No summary available",
            main_points=strings(data.get("mainPoints", data.get("main_points"))),
            suggested_actions=strings(data.get("suggestedActions", data.get("suggested_actions"))),
            priority=pick(data.get("priority"), PRIORITIES, "low"),
            category=pick(data.get("category"), CATEGORIES, "other"),
            sentiment=pick(data.get("sentiment"), SENTIMENTS, "neutral"),
            tone=pick(data.get("tone"), TONES, "neutral"),
        )
