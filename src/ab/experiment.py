"""Experiment definitions and metadata.

Each experiment belongs to one site and has a unique ID, a list of
variants with traffic weights, and the goal event(s) it aims to move.
Definitions are authored through the dashboard; the decision core only
reads them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class GoalType(str, Enum):
    CLICK = "click"
    PAGEVIEW = "pageview"
    CUSTOM_EVENT = "custom_event"
    REVENUE = "revenue"


@dataclass(frozen=True)
class Variant:
    id: str
    name: str
    weight: float  # Traffic proportion (0.0 to 1.0)


@dataclass(frozen=True)
class Goal:
    id: str
    name: str
    type: GoalType = GoalType.CUSTOM_EVENT
    is_primary: bool = False
    event_name: str | None = None


@dataclass(frozen=True)
class Experiment:
    experiment_id: str
    site_id: str
    name: str
    variants: tuple[Variant, ...]
    status: ExperimentStatus = ExperimentStatus.RUNNING
    goal_event: str = "conversion"
    goals: tuple[Goal, ...] = ()
    traffic_percentage: int = 100   # Share of visitors entered into the test
    started_at: datetime | None = None
    version: int = 1

    def __post_init__(self):
        total = sum(v.weight for v in self.variants)
        if abs(total - 1.0) > 0.001:
            raise ValueError(f"Variant weights must sum to 1.0, got {total}")
        if len(self.variants) < 2:
            raise ValueError("Experiment must have at least 2 variants")
        ids = [v.id for v in self.variants]
        if len(ids) != len(set(ids)):
            raise ValueError("Variant ids must be unique")
        if not 0 <= self.traffic_percentage <= 100:
            raise ValueError(f"traffic_percentage must be 0-100, got {self.traffic_percentage}")
        goal_ids = [g.id for g in self.goals]
        if len(goal_ids) != len(set(goal_ids)):
            raise ValueError("Goal ids must be unique")

    def variant_name(self, variant_id: str) -> str:
        for v in self.variants:
            if v.id == variant_id:
                return v.name
        return variant_id

    def goal(self, goal_id: str) -> Goal | None:
        for g in self.goals:
            if g.id == goal_id:
                return g
        return None


# Default experiment used by the simulator
CHECKOUT_CTA_EXPERIMENT = Experiment(
    experiment_id="exp_checkout_cta_v1",
    site_id="site_demo",
    name="Checkout Button Copy",
    variants=(
        Variant(id="control", name="Control", weight=0.5),
        Variant(id="variant_a", name="Buy now", weight=0.5),
    ),
    goal_event="checkout",
    goals=(
        Goal(id="goal_checkout", name="Checkout", type=GoalType.REVENUE, is_primary=True, event_name="checkout"),
        Goal(id="goal_cta_click", name="CTA click", type=GoalType.CLICK),
    ),
    version=1,
)
