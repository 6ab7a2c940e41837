"""
Pipeline stages for turn processing.

Each stage encapsulates one logical step of a turn, from narrator
generation through the termination check. Stages execute sequentially in
the TurnPipeline orchestrator.
"""

from .narrator_generation_stage import NarratorGenerationStage
from .classification_stage import ClassificationStage
from .world_state_stage import WorldStateStage
from .routing_stage import RoutingStage
from .character_commit_stage import CharacterCommitStage
from .checkpoint_stage import CheckpointStage
from .termination_stage import TerminationStage

__all__ = [
    "NarratorGenerationStage",
    "ClassificationStage",
    "WorldStateStage",
    "RoutingStage",
    "CharacterCommitStage",
    "CheckpointStage",
    "TerminationStage",
]
