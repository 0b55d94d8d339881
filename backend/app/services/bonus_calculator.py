"""
Check-in award policy.

Decides how many points and which stamp a check-in earns, from the visit
facts read inside the check-in transaction. calculate_award() is pure:
same facts and policy, same award.

Rules, in evaluation order:
1. Base points always apply.
2. First visit to the place: first-visit bonus + "first visit" stamp.
3. Previous check-in at ANY place within the consecutive window: consecutive
   bonus (points only, stacks with everything else).
4. Exactly the 5th / 10th visit to the place: milestone bonus + stamp.
   Never collides with 2 (the first visit is visit #1).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from ..models.checkins import STAMP_FIRST_VISIT, STAMP_FIVE_VISITS, STAMP_TEN_VISITS
from . import ledger_service


@dataclass(frozen=True)
class BonusPolicy:
    base_points: int = 100
    first_visit_bonus: int = 500
    consecutive_bonus: int = 200
    five_visit_bonus: int = 200
    ten_visit_bonus: int = 1000
    duplicate_window: timedelta = timedelta(hours=24)
    consecutive_window: timedelta = timedelta(hours=24)

    @classmethod
    def from_config(cls, config: Mapping) -> "BonusPolicy":
        defaults = cls()
        return cls(
            base_points=int(config.get("CHECKIN_BASE_POINTS", defaults.base_points)),
            first_visit_bonus=int(config.get("CHECKIN_FIRST_VISIT_BONUS", defaults.first_visit_bonus)),
            consecutive_bonus=int(config.get("CHECKIN_CONSECUTIVE_BONUS", defaults.consecutive_bonus)),
            five_visit_bonus=int(config.get("CHECKIN_FIVE_VISIT_BONUS", defaults.five_visit_bonus)),
            ten_visit_bonus=int(config.get("CHECKIN_TEN_VISIT_BONUS", defaults.ten_visit_bonus)),
            duplicate_window=timedelta(hours=int(config.get("CHECKIN_DUPLICATE_WINDOW_HOURS", 24))),
            consecutive_window=timedelta(hours=int(config.get("CHECKIN_CONSECUTIVE_WINDOW_HOURS", 24))),
        )

    def milestones(self) -> dict[int, tuple[int, int]]:
        """visit number -> (stamp_id, bonus)"""
        return {
            5: (STAMP_FIVE_VISITS, self.five_visit_bonus),
            10: (STAMP_TEN_VISITS, self.ten_visit_bonus),
        }


DEFAULT_POLICY = BonusPolicy()


@dataclass(frozen=True)
class VisitFacts:
    """What the policy needs to know about the user's history at decision time."""
    checked_in_at: datetime
    prior_visits_at_place: int
    previous_checkin_at: Optional[datetime] = None  # at any place

    @property
    def visit_number(self) -> int:
        # Counts the check-in being evaluated
        return self.prior_visits_at_place + 1

    @property
    def is_first_visit(self) -> bool:
        return self.prior_visits_at_place == 0


@dataclass(frozen=True)
class Award:
    points: int
    stamp_id: Optional[int]
    components: tuple[tuple[str, int], ...] = ()


def is_consecutive(previous_at: Optional[datetime], at: datetime, window: timedelta) -> bool:
    """True when the previous check-in lies in [at - window, at]."""
    if previous_at is None:
        return False
    elapsed = at - previous_at
    return timedelta(0) <= elapsed <= window


def calculate_award(facts: VisitFacts, policy: BonusPolicy = DEFAULT_POLICY) -> Award:
    components: list[tuple[str, int]] = [("base", policy.base_points)]
    stamp_id = None

    if facts.is_first_visit:
        components.append(("first_visit", policy.first_visit_bonus))
        stamp_id = STAMP_FIRST_VISIT

    if is_consecutive(facts.previous_checkin_at, facts.checked_in_at, policy.consecutive_window):
        components.append(("consecutive", policy.consecutive_bonus))

    milestone = policy.milestones().get(facts.visit_number)
    if milestone is not None and stamp_id is None:
        milestone_stamp, bonus = milestone
        components.append((f"visit_{facts.visit_number}", bonus))
        stamp_id = milestone_stamp

    return Award(
        points=sum(amount for _, amount in components),
        stamp_id=stamp_id,
        components=tuple(components),
    )


def gather_visit_facts(user_id: int, place_id: int, at: datetime) -> VisitFacts:
    """
    Read the facts for one decision.

    Must run inside the check-in transaction, after the user lock is taken,
    so the snapshot cannot change before the award is written.
    """
    previous = ledger_service.latest_checkin_before(user_id, at)
    return VisitFacts(
        checked_in_at=at,
        prior_visits_at_place=ledger_service.count_checkins_at_place(user_id, place_id),
        previous_checkin_at=previous.created_at if previous else None,
    )
