"""Result objects returned by the analytics service.

These are what the dashboard API serialises, so they are pydantic models:
`model_dump(mode="json")` gives the wire shape directly. Every result has
a `query_failed` flag; when the store could not answer, the service
returns the zeroed shape with the flag set instead of raising.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.ab.experiment import Experiment
from src.cohorts.rules import Cohort


class CohortMetrics(BaseModel):
    sessions: int = 0
    total_events: int = 0
    sessions_with_clicks: int = 0
    total_clicks: int = 0
    total_scrolls: int = 0
    click_rate: float = 0.0   # percent of sessions with at least one click


class PageRow(BaseModel):
    page_path: str
    views: int
    sessions: int


class DeviceRow(BaseModel):
    device_type: str
    sessions: int


class CohortMetricsResult(BaseModel):
    cohort: Cohort
    metrics: CohortMetrics = Field(default_factory=CohortMetrics)
    top_pages: list[PageRow] = Field(default_factory=list)
    device_breakdown: list[DeviceRow] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    query_failed: bool = False


class CohortComparisonRow(BaseModel):
    cohort_id: str
    cohort_name: str
    sessions: int = 0
    events: int = 0
    clicks: int = 0
    events_per_session: float = 0.0


class CohortComparison(BaseModel):
    comparison: list[CohortComparisonRow] = Field(default_factory=list)
    query_failed: bool = False


class GoalResult(BaseModel):
    goal_id: str
    goal_name: str
    goal_type: str
    is_primary: bool = False
    conversions: int = 0
    conversion_rate: float = 0.0
    total_revenue: float | None = None
    avg_order_value: float | None = None
    revenue_per_visitor: float | None = None


class VariantResult(BaseModel):
    variant_id: str
    variant_name: str
    users: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    goals: list[GoalResult] = Field(default_factory=list)


class ComparisonResult(BaseModel):
    variant_id: str
    control_id: str
    z_score: float
    confidence_level: float
    lift_percentage: float
    is_significant: bool


class ExperimentResult(BaseModel):
    experiment_id: str
    experiment_name: str
    status: str
    total_users: int = 0
    variants: list[VariantResult] = Field(default_factory=list)
    is_significant: bool = False
    confidence_level: float = 0.0
    winner_variant_id: str | None = None
    z_score: float = 0.0
    lift_percentage: float = 0.0
    comparisons: list[ComparisonResult] = Field(default_factory=list)
    status_message: str = ""
    status_text: str = ""
    started_at: datetime | None = None
    days_running: int = 0
    minimum_sample_size: int | None = None
    has_enough_data: bool = False
    query_failed: bool = False

    @classmethod
    def empty(cls, experiment: Experiment, query_failed: bool = False) -> "ExperimentResult":
        return cls(
            experiment_id=experiment.experiment_id,
            experiment_name=experiment.name,
            status=experiment.status.value,
            started_at=experiment.started_at,
            query_failed=query_failed,
        )
