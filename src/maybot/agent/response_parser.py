"""
agent/response_parser.py — Response Parser / Resilience Layer

Turns raw model text into trusted structured data, or raises
MalformedOutputError. Never falls back to treating prose as a reply.

Parse order:
  1. strict json.loads of the whole text
  2. strip <think> blocks, markdown fences and leading/trailing prose,
     then take the first balanced {...} object and parse that
  3. validate against PlanStep / StructuredReply

Retrying a malformed answer is the caller's job (the orchestrator re-asks
the model a bounded number of times); this module only decides.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from pydantic import ValidationError

from maybot.agent.schemas import PlanStep, StructuredReply
from maybot.exceptions import MalformedOutputError
from maybot.observability.logger import get_logger

log = get_logger(__name__)

_THINK_RE = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>", re.DOTALL | re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} object in `text`, or None.
    Braces inside JSON string literals (including escaped quotes) are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def parse_json_object(raw: Optional[str]) -> dict[str, Any]:
    """Parse model text into a JSON object, cleaning common wrapping first."""
    if raw is None or not raw.strip():
        raise MalformedOutputError("Model returned empty output", raw=raw)

    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    cleaned = _strip_fences(_THINK_RE.sub("", raw))
    candidate = extract_json_object(cleaned)
    if candidate is None:
        raise MalformedOutputError("No JSON object found in model output", raw=raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Invalid JSON in model output: {e}", raw=raw) from e
    if not isinstance(data, dict):
        raise MalformedOutputError("Model output is not a JSON object", raw=raw)
    return data


def parse_plan(raw: Optional[str]) -> PlanStep:
    data = parse_json_object(raw)
    try:
        plan = PlanStep.model_validate(data)
    except ValidationError as e:
        log.warning("parser.plan_invalid", errors=e.error_count(), raw=(raw or "")[:200])
        raise MalformedOutputError(f"Plan does not match schema: {e}", raw=raw) from e
    if plan.needs_tools is False and plan.tools_to_call:
        # a plan that lists tools wants them, whatever the flag says
        plan.needs_tools = True
    return plan


def parse_reply(raw: Optional[str]) -> StructuredReply:
    data = parse_json_object(raw)
    messages = data.get("messages")
    if isinstance(messages, list):
        data["messages"] = [
            m for m in messages
            if isinstance(m, dict) and isinstance(m.get("text"), str) and m["text"].strip()
        ]
    try:
        return StructuredReply.model_validate(data)
    except ValidationError as e:
        log.warning("parser.reply_invalid", errors=e.error_count(), raw=(raw or "")[:200])
        raise MalformedOutputError(f"Reply does not match schema: {e}", raw=raw) from e
