"""Agent core: reply decision, context building, delivery and the message loop."""

from groupbot.agent.context import ContextBuilder
from groupbot.agent.decision import Decision, ReplyDecider, Verdict
from groupbot.agent.loop import AgentLoop
from groupbot.agent.notes import NotesSummarizer
from groupbot.agent.segmenter import DeliverySequencer, Segment, parse_segments

__all__ = [
    "AgentLoop",
    "ContextBuilder",
    "Decision",
    "DeliverySequencer",
    "NotesSummarizer",
    "ReplyDecider",
    "Segment",
    "Verdict",
    "parse_segments",
]
