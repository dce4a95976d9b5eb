"""
LLM-backed email tools: summarizeEmail, draftReply, rewriteReply, analyzeEmail.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict

from pydantic import Field

from ..llm.gateway import LLMGateway
from ..protocol.envelope import ActionEnvelope
from ..schemas import AnalysisResult, CamelModel, DraftRecipients, EmailContent, StructuredEmail
from .registry import READ_ONLY, ToolAnnotations, ToolDescriptor, ToolRegistry
from .structured import structured_call


logger = logging.getLogger(__name__)


class SummarizeEmailInput(CamelModel):
    text: str = Field(min_length=1, description="The email text to summarize")


class DraftReplyInput(CamelModel):
    email: str = Field(min_length=1, description="The email content to reply to")
    tone: str = Field("polite", description="The tone for the reply")


class RewriteReplyInput(CamelModel):
    draft: str = Field(min_length=1, description="The email draft to rewrite")
    instruction: str = Field(min_length=1, description="Instructions for rewriting")


class AnalyzeEmailInput(CamelModel):
    email_content: EmailContent


STRUCTURED_EMAIL_FORMAT = """IMPORTANT: Return your response as a JSON object with this exact structure:
{
  "subject": "Email subject here",
  "sender": "Sender Name <sender@example.com>",
  "recipients": {
    "to": ["recipient@example.com"],
    "cc": [],
    "bcc": []
  },
  "body": "Your email text here",
  "bodyHtml": null
}

Return ONLY the JSON object, no additional text."""


def placeholder_email(body: str) -> StructuredEmail:
    """Degraded-mode email used when the model did not return the JSON structure."""
    return StructuredEmail(
        subject="Email Subject",
        sender="Sender <sender@example.com>",
        recipients=DraftRecipients(to=["recipient@example.com"], cc=[], bcc=[]),
        body=body,
        body_html=None,
    )


def strip_html(html: str) -> str:
    if not html:
        return ""
    text = re.sub(r"<[^>]*>", "", html)
    return re.sub(r"\s+", " ", text).strip()


def summarize_prompt(text: str) -> str:
    return f"Summarize this email in 3 bullet points:\n\n{text}"


def draft_reply_prompt(email: str, tone: str) -> str:
    return f"""You are a professional email assistant. Write a complete, well-structured reply to the following email. The reply should be {tone} in tone.

REQUIREMENTS:
- Include a proper greeting and closing
- Address all points mentioned in the original email
- Be specific and actionable where appropriate
- Maintain a {tone} tone throughout
- Do not end with "..." or incomplete thoughts
- Make it ready to send as-is

ORIGINAL EMAIL:
{email}

{STRUCTURED_EMAIL_FORMAT}"""


def rewrite_prompt(draft: str, instruction: str) -> str:
    return f"""You are a professional email assistant. Here is a draft email:

{draft}

Rewrite this email according to this instruction: {instruction}

REQUIREMENTS:
- Keep the same basic structure (greeting, body, closing)
- Make the requested changes while preserving the core message
- Return the complete email, ready to send

{STRUCTURED_EMAIL_FORMAT}"""


def analyze_prompt(email: EmailContent, text: str) -> str:
    recipients = email.recipients

    def joined(values: Any) -> str:
        return ", ".join(values) if values else "N/A"

    return f"""
Analyze this email and provide a structured response in JSON format:

Email Details:
- Subject: {email.subject}
- From: {email.sender}
- To: {joined(recipients.to if recipients else None)}
- CC: {joined(recipients.cc if recipients else None)}
- BCC: {joined(recipients.bcc if recipients else None)}

Email Content:
{text}

Please provide a JSON response with the following structure:
{{
  "summary": "A concise 2-3 sentence summary of the email",
  "mainPoints": ["Key point 1", "Key point 2", "Key point 3"],
  "suggestedActions": ["Action 1", "Action 2", "Action 3"],
  "priority": "low|medium|high",
  "category": "work|personal|marketing|notification|other",
  "sentiment": "positive|neutral|negative",
  "tone": "professional|casual|formal|urgent|friendly|polite|aggressive|apologetic|neutral"
}}

Respond with valid JSON only, no additional text.
"""


def heuristic_analysis(subject: str, sender: str, text: str) -> AnalysisResult:
    """Keyword-based analysis used whenever the model's answer is unusable. Pure and deterministic."""
    lowered_subject = subject.lower()
    lowered = text.lower()
    word_count = len(text.split(" "))

    is_urgent = any(k in lowered_subject for k in ("urgent", "asap", "important"))
    is_work = "@" in sender and "noreply" not in sender and "no-reply" not in sender
    has_questions = "?" in text
    has_deadlines = "deadline" in lowered or "due" in lowered

    if is_urgent:
        tone = "urgent"
    elif any(k in lowered for k in ("angry", "frustrated", "terrible", "unacceptable")):
        tone = "aggressive"
    elif any(k in lowered for k in ("sorry", "apologize", "regret")):
        tone = "apologetic"
    elif any(k in lowered for k in ("thanks", "appreciate", "great")):
        tone = "friendly"
    elif is_work:
        tone = "professional"
    else:
        tone = "neutral"

    if is_urgent:
        priority = "high"
    elif has_questions or has_deadlines:
        priority = "medium"
    else:
        priority = "low"

    detail = "Contains detailed information." if word_count > 100 else "Brief message."
    return AnalysisResult(
        summary=f'Email from {sender} regarding "{subject}". {detail}',
        main_points=[
            f"Subject: {subject}",
            f"From: {sender}",
            "Contains questions that need responses" if has_questions else "Informational content",
        ],
        suggested_actions=[
            "Respond to questions" if has_questions else "Review content",
            "Add to task list if needed" if is_work else "Archive if not important",
            "Check for deadlines" if has_deadlines else "No immediate action required",
        ],
        priority=priority,
        category="work" if is_work else "personal",
        sentiment="neutral",
        tone=tone,
    )


def register_email_tools(registry: ToolRegistry, gateway: LLMGateway) -> None:
    async def summarize_email(params: SummarizeEmailInput) -> ActionEnvelope:
        summary = await gateway.complete(summarize_prompt(params.text))
        return ActionEnvelope.perform(
            "I've summarized the email for you.",
            "summarizeEmail",
            {"text": summary, "originalText": params.text},
            description="Summarize the email content into key bullet points",
        )

    async def draft_reply(params: DraftReplyInput) -> ActionEnvelope:
        email = await structured_call(
            gateway.complete,
            draft_reply_prompt(params.email, params.tone),
            StructuredEmail,
            placeholder_email,
        )
        return ActionEnvelope.perform(
            "I've drafted a reply for you.",
            "draftReply",
            {"email": email.dump(), "tone": params.tone, "originalEmail": params.email},
            description="Draft a reply to the email with the specified tone",
        )

    async def rewrite_reply(params: RewriteReplyInput) -> ActionEnvelope:
        email = await structured_call(
            gateway.complete,
            rewrite_prompt(params.draft, params.instruction),
            StructuredEmail,
            placeholder_email,
        )
        return ActionEnvelope.perform(
            "I've rewritten the email draft for you.",
            "rewriteReply",
            {"email": email.dump(), "instruction": params.instruction, "originalDraft": params.draft},
            description="Rewrite an email draft according to specific instructions",
        )

    async def analyze_email(params: AnalyzeEmailInput) -> ActionEnvelope:
        email = params.email_content
        text = email.body or strip_html(email.body_html or "")

        def fallback(_raw: str) -> AnalysisResult:
            return heuristic_analysis(email.subject, str(email.sender), text)

        try:
            analysis = await structured_call(
                gateway.complete,
                analyze_prompt(email, text),
                AnalysisResult,
                fallback,
                coerce=AnalysisResult.coerce,
            )
        except Exception as e:
            # Analysis always degrades to the heuristic, even when the model is unreachable.
            logger.warning("[analyzeEmail] LLM call failed, using heuristic analysis: %s", e)
            analysis = fallback("")
        payload: Dict[str, Any] = analysis.dump()
        return ActionEnvelope.perform(
            json.dumps(payload, indent=2, ensure_ascii=False),
            "analyzeEmail",
            {"analysis": payload, "emailContent": email.dump()},
            description="Structured insights about the email",
        )

    registry.register(
        ToolDescriptor(
            name="summarizeEmail",
            title="Summarize Email",
            description="Summarize an email into key bullet points",
            input_model=SummarizeEmailInput,
            annotations=READ_ONLY,
        ),
        summarize_email,
    )
    registry.register(
        ToolDescriptor(
            name="draftReply",
            title="Draft Reply",
            description="Draft a reply to an email with a specified tone",
            input_model=DraftReplyInput,
            annotations=ToolAnnotations(read_only=True),
        ),
        draft_reply,
    )
    registry.register(
        ToolDescriptor(
            name="rewriteReply",
            title="Rewrite Reply",
            description="Rewrite an email draft according to specific instructions",
            input_model=RewriteReplyInput,
            annotations=ToolAnnotations(read_only=True),
        ),
        rewrite_reply,
    )
    registry.register(
        ToolDescriptor(
            name="analyzeEmail",
            title="Analyze Email",
            description=(
                "Analyze an email and provide structured insights including summary, main points, "
                "suggested actions, priority, category, sentiment and tone"
            ),
            input_model=AnalyzeEmailInput,
            annotations=READ_ONLY,
        ),
        analyze_email,
    )
