"""
Private moment tracking.

Records narrator asides addressed to a single player and watches later
narration for a payoff. The payoff check is a keyword heuristic: a later
narrator output pays a moment off when it shares a distinctive word with
the aside. It favors recall; unpaid moments are listed at session end for
a human to review.
"""

import re
from typing import Iterable, List, Set

import structlog

from playtest_harness.domain.models.tracking import PrivateMoment

log = structlog.get_logger(__name__)

_WORD_RE = re.compile(r"[a-z][a-z'-]*")

# Long but uninformative words that would otherwise match almost any text
COMMON_WORDS = frozenset(
    {
        "about", "above", "after", "again", "against", "along", "alone",
        "among", "another", "around", "because", "before", "behind", "being",
        "below", "between", "could", "doesn't", "don't", "during", "every",
        "everyone", "everything", "first", "other", "others", "should",
        "something", "still", "their", "there", "these", "thing", "things",
        "those", "through", "toward", "towards", "under", "until", "where",
        "which", "while", "without", "would", "you're", "yourself", "what's",
        "nothing", "someone", "really", "maybe", "perhaps", "moment",
    }
)


def distinctive_keywords(text: str, min_length: int = 5) -> Set[str]:
    """Lowercased words of at least min_length characters, common words removed."""
    return {
        word.strip("'-")
        for word in _WORD_RE.findall(text.lower())
        if len(word.strip("'-")) >= min_length and word.strip("'-") not in COMMON_WORDS
    }


class PrivateMomentTracker:
    """Per-session store of private moments.

    payoff_detected only ever goes from False to True.
    """

    def __init__(self, min_keyword_length: int = 5):
        self._moments: List[PrivateMoment] = []
        self._min_keyword_length = min_keyword_length

    @classmethod
    def from_moments(
        cls, moments: Iterable[PrivateMoment], min_keyword_length: int = 5
    ) -> "PrivateMomentTracker":
        """Restore a tracker from checkpointed moments."""
        tracker = cls(min_keyword_length)
        tracker._moments = [m.model_copy(deep=True) for m in moments]
        return tracker

    def add(self, turn: int, target: str, content: str, response: str = "") -> PrivateMoment:
        moment = PrivateMoment(turn=turn, target=target, content=content, response=response)
        self._moments.append(moment)
        log.info("private_moment_recorded", turn=turn, target=target)
        return moment

    def get_for_player(self, name: str) -> List[PrivateMoment]:
        wanted = name.lower()
        return [m for m in self._moments if m.target.lower() == wanted]

    def get_all(self) -> List[PrivateMoment]:
        return list(self._moments)

    def get_unpaid(self) -> List[PrivateMoment]:
        return [m for m in self._moments if not m.payoff_detected]

    def check_payoff(self, turn: int, narrative: str) -> List[PrivateMoment]:
        """
        Mark pending moments from earlier turns that narrative pays off.

        Args:
            turn: Turn the narrative belongs to
            narrative: Narrator output for that turn

        Returns:
            Moments newly marked as paid off on this call
        """
        narrative_words = distinctive_keywords(narrative, self._min_keyword_length)
        if not narrative_words:
            return []

        paid: List[PrivateMoment] = []
        for moment in self._moments:
            if moment.payoff_detected or moment.turn >= turn:
                continue
            # The target's own name says nothing about the aside's subject
            shared = (
                distinctive_keywords(moment.content, self._min_keyword_length)
                & narrative_words
            ) - {moment.target.lower()}
            if shared:
                moment.payoff_detected = True
                moment.payoff_turn = turn
                paid.append(moment)
                log.info(
                    "private_moment_payoff",
                    moment_turn=moment.turn,
                    payoff_turn=turn,
                    target=moment.target,
                    keywords=sorted(shared)[:5],
                )
        return paid
