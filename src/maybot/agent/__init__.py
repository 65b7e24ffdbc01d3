"""
agent/ — maybot Agent Core

Public API:
    from maybot.agent import Orchestrator, InboundMessage, Reply

Component overview:
    ContextBuilder   Planning and final-reply system instructions
    Transcript       Per-message record of user text, plans and tool results
    response_parser  Model text → PlanStep / StructuredReply, or MalformedOutputError
    replies          Fixed degraded replies
    chat             ChatClient protocol and paced reply delivery
    Orchestrator     The plan → execute → respond loop
"""

from maybot.agent.chat import ChatClient, deliver_reply
from maybot.agent.context_builder import ContextBuilder
from maybot.agent.orchestrator import LoopState, Orchestrator, TurnResult, TurnStatus
from maybot.agent.schemas import InboundMessage, OutboundMessage, Reply
from maybot.agent.transcript import Transcript

__all__ = [
    "Orchestrator",
    "TurnResult",
    "TurnStatus",
    "LoopState",
    "ContextBuilder",
    "Transcript",
    "InboundMessage",
    "OutboundMessage",
    "Reply",
    "ChatClient",
    "deliver_reply",
]
