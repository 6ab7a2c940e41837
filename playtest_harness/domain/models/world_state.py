"""World state tracked alongside the transcript.

Injected into the narrator's system prompt each turn so the story keeps
track of who is who, where the group is, and what they carry.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CharacterMapping(BaseModel):
    """Link between a real player and their in-story character."""

    player_name: str
    character_name: str
    description: str = ""
    items: List[str] = Field(default_factory=list)
    role: Optional[str] = None


class WorldState(BaseModel):
    characters: List[CharacterMapping] = Field(default_factory=list)
    location: str = "Unknown"
    npcs_encountered: List[str] = Field(default_factory=list)
    plot_flags: Dict[str, bool] = Field(default_factory=dict)

    def character_for(self, player_name: str) -> Optional[CharacterMapping]:
        for mapping in self.characters:
            if mapping.player_name.lower() == player_name.lower():
                return mapping
        return None


# =============================================================================
# Structured extraction schemas
# =============================================================================


class ItemGrant(BaseModel):
    """Item picked up by a character this turn."""

    character: str = Field(description="In-story character or player name")
    item: str


class WorldStateUpdate(BaseModel):
    """Delta extracted from one narrator output."""

    location_changed: Optional[str] = Field(
        default=None, description="New location if the group moved, else null"
    )
    new_items: List[ItemGrant] = Field(default_factory=list)
    new_npcs: List[str] = Field(default_factory=list)
    plot_flags: Dict[str, bool] = Field(default_factory=dict)


class ExtractedCharacter(BaseModel):
    player_name: str
    character_name: str
    description: str = ""
    role: Optional[str] = None


class CharacterExtraction(BaseModel):
    """Character assignments found in the group's introductions."""

    characters: List[ExtractedCharacter] = Field(default_factory=list)
