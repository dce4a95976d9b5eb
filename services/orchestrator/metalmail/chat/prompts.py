from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from ..schemas import ChatContext, Message


def _clip(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def describe_context(context: Optional[ChatContext]) -> str:
    if context is None:
        return "No current context provided"

    selected = context.selected_email()
    lines = [
        "Current Context:",
        f"- Selected Email ID: {context.selected_email_id or 'None'}",
        f"- User Email: {context.user_email or 'Unknown'}",
        f"- Thread: {len(context.thread_emails)} emails in conversation",
    ]
    if context.email_id:
        lines.append(f"- Email ID: {context.email_id}")
    if selected is not None:
        lines += [
            "- Selected Email Details:",
            f"  * Subject: {selected.subject}",
            f"  * From: {selected.sender}",
            f"  * Time: {selected.time}",
            f"  * Position in thread: {selected.message_index}",
            f"  * Body: {_clip(selected.body, 200)}",
        ]
    if context.thread_emails:
        lines.append(f"- Full Thread ({len(context.thread_emails)} messages):")
        for email in sorted(context.thread_emails, key=lambda e: e.message_index):
            marker = " [SELECTED]" if email.id == context.selected_email_id else ""
            lines += [
                f"  {email.message_index}. {email.sender} ({email.time}){marker}",
                f"     Subject: {email.subject}",
                f"     Body: {_clip(email.body, 100)}",
            ]
    if context.email_thread:
        lines += ["- Email Thread:", context.email_thread]
    draft = context.draft_text()
    if draft:
        lines += ["- Current Draft:", draft]
    prefs = context.user_preferences
    if prefs is not None and (prefs.tone or prefs.length):
        lines.append(f"- User Preferences: tone={prefs.tone or 'any'}, length={prefs.length or 'any'}")
    return "\n".join(lines)


def describe_history(history: List[Message]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in history)


def general_chat_prompt(message: str, context: Optional[ChatContext], history: List[Message]) -> str:
    """Prompt for open-ended chat that asks the model for an action-envelope shaped JSON answer."""
    conversation = describe_history(history)
    previous = f"Previous conversation:\n{conversation}\n" if conversation else ""
    return f"""You are an intelligent email assistant. You can help users with email-related tasks and suggest actions they can take.

{describe_context(context)}

{previous}
User's current message: "{message}"

Available email operations you can suggest:
1. summarizeEmail - Summarize the selected email content
2. draftReply - Draft a reply to the selected email (considering the full thread context)
3. rewriteReply - Rewrite the current draft
4. analyzeEmail - Analyze the selected email content for insights

Respond with a JSON object containing:
- "response": Your helpful response to the user
- "shouldPerformAction": true only if you are certain which single action the user wants
- "actionToPerform": {{"action", "description", "parameters"}} when shouldPerformAction is true
- "suggestedActions": [{{"label", "prompt", "description"}}] when the intent is ambiguous

Never include both actionToPerform and suggestedActions."""


def instruction_prompt(context: Optional[ChatContext], render_system: Callable[[Optional[str]], str]) -> str:
    """System message for the function-calling loop."""
    rules = """You have access to tools for summarizing, drafting, rewriting and analyzing emails,
and for managing contacts and memories. Use them when the user asks for one of these operations.

Rules:
- If a current draft is present, requests like "make it shorter" or "more formal" mean rewriteReply on the draft.
- If no draft is present, "make it shorter" means summarizeEmail on the original email.
- Only call a tool when you know which one the user wants.
- When the intent is ambiguous, answer in text and end with a line
  suggestedActions: [{"label": "...", "prompt": "...", "description": "..."}]"""
    return render_system(f"{rules}\n\n{describe_context(context)}")


def build_messages(
    prompt: str,
    context: Optional[ChatContext],
    history: List[Message],
    render_system: Callable[[Optional[str]], str],
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": instruction_prompt(context, render_system)}]
    messages += [{"role": m.role, "content": m.content} for m in history if m.role != "system"]
    messages.append({"role": "user", "content": prompt})
    return messages


def function_result_messages(name: str, arguments: str, result: str) -> List[Dict[str, Any]]:
    return [
        {"role": "assistant", "content": None, "function_call": {"name": name, "arguments": arguments}},
        {"role": "function", "name": name, "content": result},
    ]
