"""
agent/replies.py — Degraded Replies

Fixed, user-safe replies for turns that cannot produce a model answer.
Every failure path in the orchestrator ends in one of these; no raw error
text ever reaches the chat.
"""

from __future__ import annotations

from maybot.agent.schemas import OutboundMessage, Reply


def overloaded() -> Reply:
    """Iteration ceiling hit."""
    return Reply(
        messages=[
            OutboundMessage(text="Sorry, I'm a bit overloaded right now 😵", delay_ms=800),
            OutboundMessage(text="Could you ask me something simpler, or split it up?", delay_ms=1200),
        ],
        intent="max_iterations",
    )


def confused() -> Reply:
    """Model output stayed malformed after every retry."""
    return Reply(
        messages=[
            OutboundMessage(text="Hmm, I got a little confused there 🤔", delay_ms=800),
            OutboundMessage(text="Can you say that again in another way?", delay_ms=1000),
        ],
        intent="malformed",
    )


def unavailable() -> Reply:
    """No usable provider credential, or throttling outlasted every retry."""
    return Reply(
        messages=[
            OutboundMessage(text="I'm out of breath for the moment, too many messages at once 😅", delay_ms=800),
            OutboundMessage(text="Give me a minute and try again?", delay_ms=1000),
        ],
        intent="unavailable",
    )


def error() -> Reply:
    return Reply(
        messages=[
            OutboundMessage(text="Oops, something went wrong on my side 😥", delay_ms=800),
            OutboundMessage(text="Please try again in a bit.", delay_ms=1000),
        ],
        intent="error",
    )
