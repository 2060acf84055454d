"""State machine for one round of the pair-matching mini-game."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .config import settings
from .models import MatchItem, MatchingQuestion, MatchOutcome

logger = logging.getLogger(__name__)

RoundCallback = Callable[[List[MatchOutcome], int], Awaitable[None]]
ProgressCallback = Callable[[int], None]


@dataclass
class MatchingRoundState:
    selected: Optional[MatchItem] = None
    matched_pairs: Set[str] = field(default_factory=set)
    wrong_items: Set[str] = field(default_factory=set)
    results: List[MatchOutcome] = field(default_factory=list)


class MatchingEngine:
    """
    Drives one matching round over a fixed item list.

    A mismatch kills the first-selected card together with its correct partner,
    revealing the pairing; the wrongly guessed card stays in play. The round is
    over once every card is matched or dead, and the outcomes are emitted once
    after a short settle delay.
    """

    def __init__(
        self,
        question: MatchingQuestion,
        on_complete: Optional[RoundCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        settle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.question = question
        self.items: Dict[str, MatchItem] = {item.id: item for item in question.items}
        self.state = MatchingRoundState()
        self._on_complete = on_complete
        self._on_progress = on_progress
        self._settle_seconds = (
            settings.MATCH_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        )
        self._clock = clock
        self._round_started = clock()
        self._pair_started: Dict[str, float] = {}
        self._settle_task: Optional[asyncio.Task] = None
        self._emitted = False

    # --- Queries ---
    @property
    def resolved_pairs(self) -> int:
        """Pairs that are either matched or dead."""
        return len(self.state.matched_pairs) + len(self.state.wrong_items) // 2

    @property
    def is_complete(self) -> bool:
        return (
            2 * len(self.state.matched_pairs) + len(self.state.wrong_items)
            == len(self.items)
        )

    @property
    def emitted(self) -> bool:
        return self._emitted

    def is_active(self, item: MatchItem) -> bool:
        return (
            item.pair_id not in self.state.matched_pairs
            and item.id not in self.state.wrong_items
        )

    # --- Interaction ---
    def select(self, item_id: str) -> Optional[MatchOutcome]:
        """
        Handle a click on a card.

        Returns the outcome when the click completed a comparison, else None.
        """
        item = self.items.get(item_id)
        if item is None or self.is_complete or not self.is_active(item):
            return None

        selected = self.state.selected
        if selected is None:
            self.state.selected = item
            self._pair_started.setdefault(item.pair_id, self._clock())
            self._report_progress()
            return None
        if selected.id == item.id:
            self.state.selected = None
            self._report_progress()
            return None
        if selected.side == item.side:
            self.state.selected = item
            self._pair_started.setdefault(item.pair_id, self._clock())
            self._report_progress()
            return None
        return self.check_match(selected, item)

    def check_match(self, first: MatchItem, second: MatchItem) -> MatchOutcome:
        is_correct = first.pair_id == second.pair_id
        started = self._pair_started.get(first.pair_id, self._round_started)
        time_spent_ms = int((self._clock() - started) * 1000)

        if is_correct:
            self.state.matched_pairs.add(first.pair_id)
        else:
            partner = self.question.partner_of(first)
            if partner is not None:
                self.state.wrong_items.update((first.id, partner.id))

        outcome = MatchOutcome(
            pair_id=first.pair_id, is_correct=is_correct, time_spent_ms=time_spent_ms
        )
        self.state.results.append(outcome)
        self.state.selected = None
        logger.debug(
            f"Round {self.question.id}: {first.id} vs {second.id} -> "
            f"{'match' if is_correct else 'miss'}"
        )

        self._report_progress()
        if self.is_complete:
            self._schedule_completion()
        return outcome

    def cancel(self):
        """Stop a pending completion emit (round torn down)."""
        task = self._settle_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._settle_task = None

    # --- Internals ---
    def _report_progress(self):
        if self._on_progress is not None:
            self._on_progress(self.resolved_pairs)

    def _schedule_completion(self):
        if self._on_complete is None or self._settle_task is not None or self._emitted:
            return
        self._settle_task = asyncio.get_running_loop().create_task(self._settle_and_emit())

    async def _settle_and_emit(self):
        await asyncio.sleep(self._settle_seconds)
        if self._emitted:
            return
        self._emitted = True
        total_time_ms = int((self._clock() - self._round_started) * 1000)
        logger.info(
            f"Round {self.question.id} complete: {len(self.state.matched_pairs)} matched, "
            f"{len(self.state.wrong_items) // 2} dead"
        )
        await self._on_complete(list(self.state.results), total_time_ms)
