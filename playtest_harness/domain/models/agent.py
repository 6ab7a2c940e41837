"""Player agent and group models.

A PlayerAgent's identity (archetype, name, model, backstory) is fixed at
creation. Its system prompt only grows: the character commitment block is
appended once, when the group's in-story characters are first identified.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_WORD_RE = re.compile(r"[a-z0-9']+")


class StoryContext(BaseModel):
    """Reference to the story being played."""

    model_config = ConfigDict(frozen=True)

    story_id: str
    title: str
    setting: str = ""
    genre: str = ""


class GroupContext(BaseModel):
    """Shared social context that makes the group feel like real friends."""

    relationship: str = "friends"
    history: str = ""
    occasion: str = ""
    organizer: str = ""
    story_reason: str = ""
    dynamic: str = ""
    shared_memories: List[str] = Field(default_factory=list)


class PlayerIdentity(BaseModel):
    """Generated real-world identity for one player."""

    name: str
    backstory: str = ""
    group_role: str = ""
    personal_reason: str = ""
    current_state: str = ""
    relationships: Dict[str, str] = Field(
        default_factory=dict, description="Other player name -> relationship"
    )


class PlayerAgent(BaseModel):
    """A simulated participant voiced by one model."""

    model_config = ConfigDict(protected_namespaces=())

    archetype: str = Field(description="Archetype id")
    name: str
    model_id: str
    identity: PlayerIdentity
    system_prompt: str
    committed_character: Optional[str] = Field(
        default=None, description="In-story character name once locked"
    )

    def commit_character(self, character_name: str, block: str) -> bool:
        """Append the character commitment block exactly once.

        Returns:
            True if the block was appended, False if already committed
        """
        if self.committed_character is not None:
            return False
        self.system_prompt = f"{self.system_prompt}\n\n{block}"
        self.committed_character = character_name
        return True


class GroupConfig(BaseModel):
    """Ordered players plus the designated spokesperson."""

    players: List[PlayerAgent] = Field(min_length=1)
    spokesperson: str = Field(description="Name of the spokesperson player")

    @model_validator(mode="after")
    def spokesperson_is_player(self) -> "GroupConfig":
        names = [p.name for p in self.players]
        if self.spokesperson not in names:
            raise ValueError(
                f"Spokesperson {self.spokesperson!r} is not in the group: {names}"
            )
        if len(set(names)) != len(names):
            raise ValueError(f"Player names must be unique: {names}")
        return self

    @property
    def spokesperson_agent(self) -> PlayerAgent:
        return self.get(self.spokesperson)

    @property
    def player_names(self) -> List[str]:
        return [p.name for p in self.players]

    def get(self, name: str) -> PlayerAgent:
        for player in self.players:
            if player.name == name:
                return player
        raise KeyError(name)

    def find(self, name: str) -> Optional[PlayerAgent]:
        """
        Case-insensitive lookup tolerant of short and long forms.

        An exact name wins. Otherwise a name matches when the query is the
        start of one of its words ("sam" -> "Samantha") or the query contains
        the whole name as a word ("Sam Reyes" -> "Sam"). Ambiguous queries
        resolve to nobody.
        """
        wanted = name.strip().lower()
        if not wanted:
            return None
        for player in self.players:
            if player.name.lower() == wanted:
                return player

        wanted_words = _words(wanted)
        matches = [
            player
            for player in self.players
            if any(word.startswith(wanted) for word in _words(player.name.lower()))
            or player.name.lower() in wanted_words
        ]
        return matches[0] if len(matches) == 1 else None


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text)
