"""
Tests for the LLM-backed email tools and their degraded modes
"""

import asyncio
import json

from conftest import FakeGateway

from metalmail.schemas import CATEGORIES, PRIORITIES, SENTIMENTS, TONES, AnalysisResult
from metalmail.tools.email_tools import heuristic_analysis, register_email_tools, strip_html
from metalmail.tools.registry import ToolRegistry
from metalmail.tools.structured import extract_suggested_actions, parse_json_object

STRUCTURED = {
    "subject": "Re: Meeting",
    "sender": "Me <me@example.com>",
    "recipients": {"to": ["john@example.com"], "cc": [], "bcc": []},
    "body": "Tuesday works.",
    "bodyHtml": None,
}

EMAIL = {
    "subject": "URGENT: contract",
    "sender": "boss@company.com",
    "recipients": {"to": ["me@company.com"]},
    "body": "Can you sign before the deadline?",
}


def registry_with(gateway: FakeGateway) -> ToolRegistry:
    registry = ToolRegistry()
    register_email_tools(registry, gateway)
    return registry


def assert_email_shape(email: dict) -> None:
    assert set(email) == {"subject", "sender", "recipients", "body", "bodyHtml"}
    assert set(email["recipients"]) == {"to", "cc", "bcc"}
    assert all(isinstance(email["recipients"][k], list) for k in ("to", "cc", "bcc"))


class TestSummarizeEmail:
    def test_summary_action(self):
        gateway = FakeGateway(completions=["- one\n- two\n- three"])
        env = asyncio.run(registry_with(gateway).invoke("summarizeEmail", {"text": "Long email"}))

        assert env.action_to_perform.action == "summarizeEmail"
        assert env.action_to_perform.parameters == {"text": "- one\n- two\n- three", "originalText": "Long email"}
        assert gateway.prompts[0].startswith("Summarize this email in 3 bullet points:")


class TestDraftAndRewrite:
    def test_draft_reply_parses_structured_json(self):
        gateway = FakeGateway(completions=[json.dumps(STRUCTURED)])
        env = asyncio.run(registry_with(gateway).invoke("draftReply", {"email": "Can we meet Tuesday?"}))

        params = env.action_to_perform.parameters
        assert env.action_to_perform.action == "draftReply"
        assert params["email"]["body"] == "Tuesday works."
        assert params["originalEmail"] == "Can we meet Tuesday?"
        assert params["tone"] == "polite"
        assert_email_shape(params["email"])

    def test_draft_reply_accepts_code_fence(self):
        gateway = FakeGateway(completions=["```json\n" + json.dumps(STRUCTURED) + "\n```"])
        env = asyncio.run(registry_with(gateway).invoke("draftReply", {"email": "Hi", "tone": "formal"}))

        assert env.action_to_perform.parameters["email"]["subject"] == "Re: Meeting"
        assert "formal" in gateway.prompts[0]

    def test_rewrite_falls_back_on_prose(self):
        gateway = FakeGateway(completions=["Thanks, see you Tuesday."])
        env = asyncio.run(
            registry_with(gateway).invoke("rewriteReply", {"draft": "Thanks.", "instruction": "make it shorter"})
        )

        params = env.action_to_perform.parameters
        assert env.action_to_perform.action == "rewriteReply"
        assert params["email"]["body"] == "Thanks, see you Tuesday."
        assert params["email"]["sender"] == "Sender <sender@example.com>"
        assert params["email"]["recipients"]["to"] == ["recipient@example.com"]
        assert params["email"]["bodyHtml"] is None
        assert params["instruction"] == "make it shorter"
        assert params["originalDraft"] == "Thanks."
        assert_email_shape(params["email"])

    def test_rewrite_parsed_output_keeps_shape(self):
        gateway = FakeGateway(completions=[json.dumps(STRUCTURED)])
        env = asyncio.run(
            registry_with(gateway).invoke("rewriteReply", {"draft": "Hello", "instruction": "more formal"})
        )

        assert_email_shape(env.action_to_perform.parameters["email"])


class TestAnalyzeEmail:
    def test_llm_values_out_of_enum_are_coerced(self):
        answer = {"summary": "", "priority": "critical", "category": "WORK", "sentiment": "mixed", "tone": "snarky"}
        gateway = FakeGateway(completions=[json.dumps(answer)])
        env = asyncio.run(registry_with(gateway).invoke("analyzeEmail", {"emailContent": EMAIL}))

        analysis = env.action_to_perform.parameters["analysis"]
        assert analysis["summary"] == "No summary available"
        assert analysis["priority"] == "low"
        assert analysis["category"] == "work"
        assert analysis["sentiment"] == "neutral"
        assert analysis["tone"] == "neutral"

    def test_unparseable_answer_uses_heuristic(self):
        gateway = FakeGateway(completions=["I think it's urgent"])
        env = asyncio.run(registry_with(gateway).invoke("analyzeEmail", {"emailContent": EMAIL}))

        analysis = env.action_to_perform.parameters["analysis"]
        assert analysis["priority"] == "high"
        assert analysis["tone"] == "urgent"
        assert analysis["category"] == "work"

    def test_llm_failure_uses_heuristic(self):
        gateway = FakeGateway(completions=[RuntimeError("connection refused")])
        env = asyncio.run(registry_with(gateway).invoke("analyzeEmail", {"emailContent": EMAIL}))

        assert json.loads(env.text_content)["priority"] == "high"

    def test_invalid_sender_is_a_validation_error(self):
        from metalmail.errors import ValidationError

        bad = dict(EMAIL, sender="not-an-email")
        try:
            asyncio.run(registry_with(FakeGateway()).invoke("analyzeEmail", {"emailContent": bad}))
        except ValidationError as e:
            assert any("sender" in f for f in e.fields)
        else:
            raise AssertionError("Expected ValidationError")

    def test_html_only_body(self):
        gateway = FakeGateway(completions=["nope"])
        email = {"subject": "Hello", "sender": "a@b.com", "bodyHtml": "<p>Thanks for the <b>great</b> work</p>"}
        env = asyncio.run(registry_with(gateway).invoke("analyzeEmail", {"emailContent": email}))

        assert "Thanks for the great work" in gateway.prompts[0]
        assert env.action_to_perform.parameters["analysis"]["tone"] == "friendly"


class TestHeuristicAnalysis:
    def test_always_within_enums(self):
        samples = [
            ("Hi", "noreply@news.com", "Big sale this week"),
            ("ASAP", "x@y.com", "angry?"),
            ("re", "friend", "sorry about that, the report is due friday"),
            ("", "", ""),
        ]
        for subject, sender, text in samples:
            result = heuristic_analysis(subject, sender, text)
            assert result.priority in PRIORITIES
            assert result.category in CATEGORIES
            assert result.sentiment in SENTIMENTS
            assert result.tone in TONES
            assert len(result.main_points) == 3
            assert len(result.suggested_actions) == 3

    def test_deterministic(self):
        a = heuristic_analysis("Question", "a@b.com", "When is it due?")
        b = heuristic_analysis("Question", "a@b.com", "When is it due?")
        assert a == b
        assert a.priority == "medium"

    def test_tone_order(self):
        assert heuristic_analysis("x", "friend", "This is terrible, sorry").tone == "aggressive"
        assert heuristic_analysis("x", "friend", "sorry, thanks").tone == "apologetic"
        assert heuristic_analysis("x", "a@b.com", "see attached").tone == "professional"
        assert heuristic_analysis("x", "friend", "see attached").tone == "neutral"

    def test_summary_mentions_length(self):
        long_text = " ".join(["word"] * 150)
        assert heuristic_analysis("S", "a@b.com", long_text).summary.endswith("Contains detailed information.")
        assert heuristic_analysis("S", "a@b.com", "short").summary == 'Email from a@b.com regarding "S". Brief message.'


class TestStructuredDecoding:
    def test_strip_html(self):
        assert strip_html("<div>Hello\n\n <i>there</i></div>") == "Hello there"
        assert strip_html("") == ""

    def test_parse_json_object_variants(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}
        assert parse_json_object('Sure! {"a": 1} Hope that helps') == {"a": 1}
        assert parse_json_object("[1, 2]") is None
        assert parse_json_object("no json here") is None

    def test_extract_suggested_actions(self):
        text = 'Which one?\nsuggestedActions: [{"label": "Summarize", "prompt": "summarize"}]'
        actions = extract_suggested_actions(text)
        assert [a.label for a in actions] == ["Summarize"]

    def test_extract_suggested_actions_maps_legacy_shape(self):
        text = 'suggestedActions: [{"action": "draftReply", "description": "Draft a reply"}]'
        actions = extract_suggested_actions(text)
        assert actions[0].label == "draftReply"
        assert actions[0].prompt == "Draft a reply"

    def test_extract_suggested_actions_is_best_effort(self):
        assert extract_suggested_actions("suggestedActions: [not json]") is None
        assert extract_suggested_actions("nothing to see") is None

    def test_coerce_analysis(self):
        result = AnalysisResult.coerce({"summary": "ok", "mainPoints": "x", "priority": "HIGH"})
        assert result.priority == "high"
        assert result.main_points == []
