"""
tests/unit/test_response_parser.py — Response Parser Unit Tests

Run with:
    pytest tests/unit/test_response_parser.py -v
"""

from __future__ import annotations

import json

import pytest

from maybot.agent.response_parser import (
    extract_json_object,
    parse_json_object,
    parse_plan,
    parse_reply,
)
from maybot.agent.schemas import DEFAULT_DELAY_MS, MAX_DELAY_MS, InboundMessage
from maybot.exceptions import MalformedOutputError


PLAN = {
    "needs_tools": True,
    "tools_to_call": [{"name": "describe_table", "args": '{"table_name": "debts"}'}],
    "reasoning": "need the debts columns",
}

REPLY = {
    "type": "reply",
    "messages": [{"text": "Chào bạn!", "delay": "800"}, {"text": "Mình đây", "delay": "1500"}],
    "intent": "greeting",
}


class TestExtractJsonObject:
    def test_braces_inside_strings_ignored(self):
        text = 'noise {"a": "curly } and { inside", "b": "quote \\" }"} trailing'
        assert json.loads(extract_json_object(text)) == {"a": "curly } and { inside", "b": 'quote " }'}

    def test_nested_objects(self):
        assert extract_json_object('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'

    def test_skips_unbalanced_brace(self):
        assert extract_json_object('{ oops {"ok": true}') == '{"ok": true}'

    def test_none_when_absent(self):
        assert extract_json_object("no json here") is None


class TestParseJsonObject:
    def test_strict(self):
        assert parse_json_object(json.dumps(PLAN)) == PLAN

    def test_markdown_fence(self):
        raw = "Here you go:\n```json\n" + json.dumps(REPLY) + "\n```\nanything else?"
        assert parse_json_object(raw) == REPLY

    def test_leading_prose(self):
        raw = "Sure! The plan is " + json.dumps(PLAN) + " hope that helps"
        assert parse_json_object(raw) == PLAN

    def test_think_block_removed(self):
        raw = '<think>maybe {"needs_tools": false}</think>' + json.dumps(PLAN)
        assert parse_json_object(raw) == PLAN

    @pytest.mark.parametrize("raw", [None, "", "   ", "just chatting, no json", "[1, 2, 3]"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedOutputError):
            parse_json_object(raw)

    def test_broken_json_object(self):
        with pytest.raises(MalformedOutputError, match="Invalid JSON"):
            parse_json_object('{"needs_tools": tru}')


class TestParsePlan:
    def test_tool_args_decoded(self):
        plan = parse_plan(json.dumps(PLAN))
        assert plan.needs_tools
        assert plan.tools_to_call[0].name == "describe_table"
        assert plan.tools_to_call[0].args == {"table_name": "debts"}

    def test_listed_tools_force_needs_tools(self):
        data = dict(PLAN, needs_tools=False)
        assert parse_plan(json.dumps(data)).needs_tools is True

    def test_no_tools(self):
        plan = parse_plan('{"needs_tools": false, "tools_to_call": [], "reasoning": "chit-chat"}')
        assert not plan.needs_tools
        assert plan.tools_to_call == []

    def test_null_or_array_args_keep_the_plan(self):
        plan = parse_plan(json.dumps({
            "needs_tools": True,
            "tools_to_call": [
                {"name": "list_tables", "args": "null"},
                {"name": "describe_table", "args": "[]"},
            ],
        }))
        assert [c.args for c in plan.tools_to_call] == [{}, {"_raw": []}]

    def test_schema_mismatch(self):
        with pytest.raises(MalformedOutputError, match="Plan does not match schema"):
            parse_plan('{"needs_tools": "perhaps", "tools_to_call": "all of them"}')


class TestParseReply:
    def test_delays_coerced(self):
        reply = parse_reply(json.dumps(REPLY)).to_reply()
        assert [m.delay_ms for m in reply.messages] == [800, 1500]
        assert reply.intent == "greeting"
        assert reply.messages[0].text == "Chào bạn!"

    def test_defaults_and_clamping(self):
        raw = json.dumps({
            "messages": [
                {"text": "a"},
                {"text": "b", "delay": "soon"},
                {"text": "c", "delay": 99_999},
                {"text": "d", "delay": -5, "sticker": "null"},
                {"text": "e", "delay": 0, "sticker": "cat_wave"},
            ],
        })
        reply = parse_reply(raw)
        assert [m.delay for m in reply.messages] == [
            DEFAULT_DELAY_MS, DEFAULT_DELAY_MS, MAX_DELAY_MS, 0, 0,
        ]
        assert reply.messages[3].sticker is None
        assert reply.messages[4].sticker == "cat_wave"
        assert reply.intent == "reply"

    def test_blank_messages_dropped(self):
        raw = json.dumps({"messages": [{"text": "  "}, {"text": "hi"}, "stray"], "intent": "x"})
        assert [m.text for m in parse_reply(raw).messages] == ["hi"]

    @pytest.mark.parametrize("messages", [[], [{"text": ""}], None])
    def test_no_usable_messages_is_malformed(self, messages):
        with pytest.raises(MalformedOutputError):
            parse_reply(json.dumps({"type": "reply", "messages": messages, "intent": "x"}))


class TestInboundMessage:
    def test_integer_ids_stringified(self):
        msg = InboundMessage(chat_id=42, user_id=7, message_id=9, text="hi")
        assert (msg.chat_id, msg.user_id, msg.message_id) == ("42", "7", "9")
