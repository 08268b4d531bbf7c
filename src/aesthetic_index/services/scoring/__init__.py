"""Score composition and publish gating."""

from aesthetic_index.services.scoring.composer import ComposedScore, ScoreComposer
from aesthetic_index.services.scoring.publish_gate import Evidence, GateDecision, PublishGate

__all__ = [
    "ComposedScore",
    "Evidence",
    "GateDecision",
    "PublishGate",
    "ScoreComposer",
]
