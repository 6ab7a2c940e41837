"""Branch lineage carried by checkpoints of branched sessions."""

from pydantic import BaseModel, ConfigDict


class CheckpointLineage(BaseModel):
    """Where a branched session came from.

    root_session_id is the session at the base of the branch tree, so the
    whole tree can be rebuilt without scanning storage.
    """

    model_config = ConfigDict(frozen=True)

    parent_session_id: str
    parent_turn: int
    branch_reason: str
    root_session_id: str
