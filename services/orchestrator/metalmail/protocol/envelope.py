"""
Action protocol envelope.

Every tool and the dispatcher return an ``ActionEnvelope``: text content plus,
optionally, either a concrete action for the caller to perform or a list of
suggested actions to offer the user. Never both.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, model_validator

from ..errors import InvalidEnvelopeError
from ..schemas import CamelModel


class TextBlock(CamelModel):
    type: Literal["text"] = "text"
    text: str


class ActionToPerform(CamelModel):
    action: str
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class SuggestedAction(CamelModel):
    label: str
    prompt: str
    description: Optional[str] = None


class ActionEnvelope(CamelModel):
    content: List[TextBlock] = Field(default_factory=list)
    should_perform_action: Optional[bool] = None
    action_to_perform: Optional[ActionToPerform] = None
    suggested_actions: Optional[List[SuggestedAction]] = None

    @model_validator(mode="after")
    def _check_branches(self) -> "ActionEnvelope":
        has_action = self.action_to_perform is not None
        has_suggestions = self.suggested_actions is not None
        if has_action and has_suggestions:
            raise InvalidEnvelopeError("actionToPerform and suggestedActions are mutually exclusive")
        if has_action and self.should_perform_action is not True:
            raise InvalidEnvelopeError("actionToPerform requires shouldPerformAction=true")
        if self.should_perform_action is True and not has_action:
            raise InvalidEnvelopeError("shouldPerformAction=true requires actionToPerform")
        if self.should_perform_action is False and not has_suggestions:
            raise InvalidEnvelopeError("shouldPerformAction=false requires suggestedActions (possibly empty)")
        return self

    @classmethod
    def text(cls, text: str) -> "ActionEnvelope":
        return cls(content=[TextBlock(text=text)])

    @classmethod
    def perform(
        cls,
        text: str,
        action: str,
        parameters: Dict[str, Any],
        description: Optional[str] = None,
    ) -> "ActionEnvelope":
        return cls(
            content=[TextBlock(text=text)],
            should_perform_action=True,
            action_to_perform=ActionToPerform(action=action, description=description, parameters=parameters),
        )

    @classmethod
    def suggest(cls, text: str, suggestions: Optional[List[SuggestedAction]] = None) -> "ActionEnvelope":
        return cls(
            content=[TextBlock(text=text)],
            should_perform_action=False,
            suggested_actions=list(suggestions or []),
        )

    @property
    def text_content(self) -> str:
        return "\n".join(block.text for block in self.content)

    def to_text(self) -> str:
        """Render for re-prompting an LLM with a tool result."""
        return json.dumps(self.dump(), ensure_ascii=False)
