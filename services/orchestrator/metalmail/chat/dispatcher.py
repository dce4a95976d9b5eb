"""
Tool-selection dispatcher.

Routing is an ordered table of rules evaluated against the trimmed, lower-cased
user message; the first rule that produces a route wins. A rule may match and still
decline (no email to work on), in which case evaluation continues and ends in
general LLM chat.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import Field

from ..llm.gateway import LLMGateway
from ..protocol.envelope import ActionEnvelope
from ..schemas import CamelModel, ChatContext, Message, ThreadEmail
from ..tools.registry import ToolAnnotations, ToolDescriptor, ToolRegistry
from ..tools.structured import coerce_suggestions, parse_json_object
from .prompts import general_chat_prompt


logger = logging.getLogger(__name__)

GENERAL_CHAT = "generalChat"

MODIFY_DRAFT_RE = re.compile(
    r"\b(change|update|modify|revise|rewrite|make|adjust|improve|enhance|fix|correct)\b"
    r".*\b(draft|reply|response|email|tone|style|format|it|this|that)\b"
)
SHORTEN_RE = re.compile(r"\b(shorter|shorten|condense|more concise|briefer|too long)\b")
DRAFT_BODY_RE = re.compile(r"\n\n(.+)$", re.DOTALL)
QUOTED_REPLY_RE = re.compile(r"^On\s[^\n]*wrote:.*\Z", re.DOTALL | re.MULTILINE)


@dataclass(frozen=True)
class Route:
    rule: str
    tool: Optional[str]
    arguments: Dict[str, Any] = field(default_factory=dict)


Builder = Callable[[str, ChatContext], Optional[Route]]


@dataclass(frozen=True)
class Rule:
    name: str
    matches: Callable[[str, ChatContext], bool]
    build: Builder


def sanitize_body(body: str) -> str:
    """Drop a trailing quoted-reply block ("On <date>, <someone> wrote: ...")."""
    return QUOTED_REPLY_RE.sub("", body).strip()


def draft_body(draft: str) -> str:
    """Body of a draft without its salutation line; the whole draft when there is no blank line."""
    m = DRAFT_BODY_RE.search(draft)
    return m.group(1) if m else draft


def _selected(ctx: ChatContext) -> Optional[ThreadEmail]:
    email = ctx.selected_email()
    if email is None:
        logger.info("[dispatcher] no thread email for selectedEmailId=%s", ctx.selected_email_id)
    return email


def _selected_body(ctx: ChatContext) -> Optional[str]:
    email = _selected(ctx)
    if email is None:
        return None
    body = sanitize_body(email.body)
    if not body:
        logger.info("[dispatcher] selected email %s has no body", email.id)
        return None
    return body


def _rewrite(raw: str, ctx: ChatContext) -> Optional[Route]:
    draft = ctx.draft_text()
    if not draft:
        return None
    return Route("modifyDraft", "rewriteReply", {"draft": draft_body(draft), "instruction": raw})


def _shorten(raw: str, ctx: ChatContext) -> Optional[Route]:
    """With a draft, shortening rewrites the draft; otherwise it summarizes the email being read."""
    if ctx.has_draft():
        return _rewrite(raw, ctx)
    email = ctx.selected_email()
    body = sanitize_body(email.body) if email is not None else ""
    if body:
        return Route("shortenEmail", "summarizeEmail", {"text": body})
    if ctx.email_thread and ctx.email_thread.strip():
        return Route("shortenEmail", "summarizeEmail", {"text": ctx.email_thread})
    return None


def _draft_reply(raw: str, ctx: ChatContext) -> Optional[Route]:
    body = _selected_body(ctx)
    if body is None:
        return None
    return Route("draftReply", "draftReply", {"email": body})


def _summarize(raw: str, ctx: ChatContext) -> Optional[Route]:
    body = _selected_body(ctx)
    if body is None:
        return None
    return Route("summarizeEmail", "summarizeEmail", {"text": body})


def _analyze(raw: str, ctx: ChatContext) -> Optional[Route]:
    body = _selected_body(ctx)
    if body is None:
        return None
    email = ctx.selected_email()
    return Route(
        "analyzeEmail",
        "analyzeEmail",
        {"emailContent": {"subject": email.subject, "sender": email.sender, "body": body}},
    )


RULES: List[Rule] = [
    Rule("modifyDraft", lambda msg, ctx: ctx.has_draft() and bool(MODIFY_DRAFT_RE.search(msg)), _rewrite),
    Rule("shortenEmail", lambda msg, ctx: bool(SHORTEN_RE.search(msg)), _shorten),
    Rule("draftReply", lambda msg, ctx: msg == "draft reply", _draft_reply),
    Rule("summarizeEmail", lambda msg, ctx: msg in ("summarize", "summarize email"), _summarize),
    Rule("analyzeEmail", lambda msg, ctx: msg in ("analyze", "analyze email"), _analyze),
]


class Dispatcher:
    def __init__(self, registry: ToolRegistry, gateway: LLMGateway, rules: Optional[List[Rule]] = None):
        self.registry = registry
        self.gateway = gateway
        self.rules = list(RULES if rules is None else rules)

    def route(self, message: str, context: Optional[ChatContext] = None) -> Route:
        """Pure routing decision; does not call the LLM or any tool."""
        ctx = context or ChatContext()
        normalized = message.strip().lower()
        raw = message.strip()
        for rule in self.rules:
            if not rule.matches(normalized, ctx):
                continue
            route = rule.build(raw, ctx)
            if route is not None:
                logger.info("[dispatcher] %r -> %s via %s", normalized, route.tool, rule.name)
                return route
        return Route(GENERAL_CHAT, None)

    async def dispatch(
        self,
        message: str,
        context: Optional[ChatContext] = None,
        history: Optional[List[Message]] = None,
    ) -> ActionEnvelope:
        route = self.route(message, context)
        if route.tool is not None:
            return await self.registry.invoke(route.tool, route.arguments)
        return await self.general_chat(message, context, history or [])

    async def general_chat(
        self,
        message: str,
        context: Optional[ChatContext],
        history: List[Message],
    ) -> ActionEnvelope:
        text = await self.gateway.complete(general_chat_prompt(message, context, history))
        data = parse_json_object(text)
        if data is None:
            return ActionEnvelope.suggest(text, [])
        return envelope_from_chat_json(data, text)


def envelope_from_chat_json(data: Dict[str, Any], raw: str) -> ActionEnvelope:
    """Map a model's {response, shouldPerformAction, actionToPerform, suggestedActions} answer onto an envelope."""
    response = data.get("response")
    text = response if isinstance(response, str) and response.strip() else raw
    action = data.get("actionToPerform")
    if data.get("shouldPerformAction") is True and isinstance(action, dict) and action.get("action"):
        parameters = action.get("parameters")
        return ActionEnvelope.perform(
            text,
            str(action["action"]),
            parameters if isinstance(parameters, dict) else {},
            description=action.get("description"),
        )
    return ActionEnvelope.suggest(text, coerce_suggestions(data.get("suggestedActions")))


class IntelligentChatInput(CamelModel):
    message: str = Field(min_length=1)
    conversation_history: List[Message] = Field(default_factory=list)
    current_context: Optional[ChatContext] = None


def register_intelligent_chat(registry: ToolRegistry, dispatcher: Dispatcher) -> None:
    async def intelligent_chat(p: IntelligentChatInput) -> ActionEnvelope:
        return await dispatcher.dispatch(p.message, p.current_context, p.conversation_history)

    registry.register(
        ToolDescriptor(
            name="intelligentChat",
            title="Intelligent Chat Assistant",
            description="AI assistant that can chat and perform email operations",
            input_model=IntelligentChatInput,
            annotations=ToolAnnotations(),
        ),
        intelligent_chat,
    )
