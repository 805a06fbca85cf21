"""Statistical analysis for A/B experiments.

Implements a pooled two-proportion z-test of every variant against a single
control, a sample-size estimate for planning, and the mapping from results
to a display status. Everything here is pure: identical inputs give
bit-identical outputs, which the result cache and the tests rely on.

Comparisons are made pairwise against the control only. With more than two
variants no multiple-comparison correction is applied; changing that would
change which historical experiments were reported as significant.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from scipy import stats

SIGNIFICANCE_THRESHOLD = 95.0   # confidence level (%) needed to call a result
TRENDING_THRESHOLD = 80.0
MIN_OBSERVATIONS = 100          # users per variant before significance is allowed
DEFAULT_POWER = 0.8
DEFAULT_CONFIDENCE = 95.0


@dataclass(frozen=True)
class GoalStats:
    """Descriptive per-goal numbers for one variant. Not significance-tested."""

    goal_id: str
    goal_type: str
    conversions: int
    conversion_rate: float
    goal_name: str = ""
    is_primary: bool = False
    total_revenue: float | None = None
    avg_order_value: float | None = None
    revenue_per_visitor: float | None = None


@dataclass(frozen=True)
class VariantStats:
    variant_id: str
    users: int
    conversions: int
    variant_name: str = ""
    goals: tuple[GoalStats, ...] = ()

    def __post_init__(self):
        if self.users < 0 or self.conversions < 0:
            raise ValueError(f"Variant {self.variant_id} has negative counts")
        if self.conversions > self.users:
            raise ValueError(
                f"Variant {self.variant_id} has more conversions ({self.conversions}) "
                f"than users ({self.users})"
            )

    @property
    def conversion_rate(self) -> float:
        if self.users == 0:
            return 0.0
        return self.conversions / self.users


@dataclass(frozen=True)
class Comparison:
    """One variant tested against the control.

    `z_score` and `confidence_level` are rounded for display;
    `is_significant` is decided on the unrounded statistic.
    """

    variant_id: str
    control_id: str
    z_score: float
    confidence_level: float
    lift_percentage: float
    is_significant: bool = False


@dataclass(frozen=True)
class Analysis:
    is_significant: bool
    confidence_level: float
    winner_variant_id: str | None = None
    z_score: float = 0.0
    lift_percentage: float = 0.0
    comparisons: tuple[Comparison, ...] = field(default_factory=tuple)


def z_score(control: VariantStats, variant: VariantStats) -> float:
    """Pooled two-proportion z statistic; positive means the variant converts better.

    Defined as 0 when the standard error is 0 (no users, or every user
    converted / none did).
    """
    n_c, n_v = control.users, variant.users
    if n_c == 0 or n_v == 0:
        return 0.0

    p_pool = (control.conversions + variant.conversions) / (n_c + n_v)
    se = math.sqrt(p_pool * (1 - p_pool) * (1 / n_c + 1 / n_v))
    if se == 0:
        return 0.0
    return (variant.conversion_rate - control.conversion_rate) / se


def confidence_from_z(z: float) -> float:
    """Two-tailed confidence level in percent for a z statistic, rounded for display."""
    return round(_raw_confidence(z), 2)


def reaches_significance(z: float) -> bool:
    """True when the unrounded two-tailed confidence reaches SIGNIFICANCE_THRESHOLD."""
    return _raw_confidence(z) >= SIGNIFICANCE_THRESHOLD


def _raw_confidence(z: float) -> float:
    return float((2 * stats.norm.cdf(abs(z)) - 1) * 100)


def calculate_lift(control: VariantStats, variant: VariantStats) -> float:
    """Relative improvement of the variant over the control, in percent."""
    if control.conversion_rate == 0:
        # No baseline to be relative to
        return 100.0 if variant.conversion_rate > 0 else 0.0
    return (variant.conversion_rate - control.conversion_rate) / control.conversion_rate * 100


def compare(control: VariantStats, variant: VariantStats) -> Comparison:
    z = z_score(control, variant)
    return Comparison(
        variant_id=variant.variant_id,
        control_id=control.variant_id,
        z_score=round(z, 3),
        confidence_level=confidence_from_z(z),
        lift_percentage=round(calculate_lift(control, variant), 1),
        is_significant=reaches_significance(z),
    )


def analyze(variants: Sequence[VariantStats]) -> Analysis:
    """Compare every variant against the control and pick a winner.

    The control is the first variant in the order given (the first one with
    users, if it has none); callers must pass a stable order. The result is
    significant when the best comparison reaches SIGNIFICANCE_THRESHOLD before
    rounding and every variant has at least MIN_OBSERVATIONS users.
    """
    active = [v for v in variants if v.users > 0]
    if len(active) < 2:
        return Analysis(is_significant=False, confidence_level=0.0)

    control = variants[0] if variants[0].users > 0 else active[0]
    comparisons = tuple(compare(control, v) for v in variants if v is not control and v.users > 0)

    best = min(
        comparisons,
        key=lambda c: (-c.confidence_level, -c.is_significant, -abs(c.z_score), c.variant_id),
    )
    enough_data = all(v.users >= MIN_OBSERVATIONS for v in variants)
    is_significant = best.is_significant and enough_data

    winner = _pick_winner(control, variants, comparisons) if is_significant else None

    return Analysis(
        is_significant=is_significant,
        confidence_level=best.confidence_level,
        winner_variant_id=winner,
        z_score=best.z_score,
        lift_percentage=best.lift_percentage,
        comparisons=comparisons,
    )


def _pick_winner(
    control: VariantStats,
    variants: Sequence[VariantStats],
    comparisons: Sequence[Comparison],
) -> str | None:
    by_id = {v.variant_id: v for v in variants}
    significant = [c for c in comparisons if c.is_significant]

    better = [by_id[c.variant_id] for c in significant if c.z_score > 0]
    if better:
        # Highest rate, then more users, then the smaller id
        best = min(better, key=lambda v: (-v.conversion_rate, -v.users, v.variant_id))
        return best.variant_id

    # Every significant comparison favours the control
    if significant:
        return control.variant_id
    return None


def calculate_minimum_sample_size(
    baseline_rate: float,
    minimum_detectable_effect: float,
    confidence_level: float = DEFAULT_CONFIDENCE,
    power: float = DEFAULT_POWER,
) -> int | None:
    """Users needed per variant to detect a relative lift.

    n = (z_{a/2} + z_b)^2 * 2p(1-p) / d^2, with d = p * mde.
    Returns None when the inputs leave the size undefined.
    """
    if not 0 < baseline_rate < 1 or minimum_detectable_effect <= 0:
        return None
    if not 0 < confidence_level < 100 or not 0 < power < 1:
        return None

    alpha = 1 - confidence_level / 100
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p = baseline_rate
    delta = p * minimum_detectable_effect
    n = (z_alpha + z_beta) ** 2 * 2 * p * (1 - p) / delta ** 2
    return int(math.ceil(n))


def estimate_days_to_significance(
    daily_visitors: float,
    baseline_rate: float,
    minimum_detectable_effect: float,
    num_variants: int = 2,
    confidence_level: float = DEFAULT_CONFIDENCE,
) -> int | None:
    if daily_visitors <= 0 or num_variants < 2:
        return None
    per_variant = calculate_minimum_sample_size(
        baseline_rate, minimum_detectable_effect, confidence_level,
    )
    if per_variant is None:
        return None
    return int(math.ceil(per_variant * num_variants / daily_visitors))


class StatusMessage(str, Enum):
    NOT_ENOUGH_DATA = "not enough data"
    TRENDING = "trending but not significant"
    WINNER_FOUND = "winner found"
    NO_MEANINGFUL_DIFFERENCE = "no meaningful difference"

    def describe(self, confidence: float, winner: str | None = None) -> str:
        if self is StatusMessage.NOT_ENOUGH_DATA:
            return f"Collecting data... Need at least {MIN_OBSERVATIONS} visitors per variant."
        if self is StatusMessage.TRENDING:
            return f"Trending towards significance ({confidence:.0f}% confidence). Continue test."
        if self is StatusMessage.WINNER_FOUND:
            return f"Winner found! {winner} with {confidence:.0f}% confidence."
        return "No significant difference detected yet. Continue running the test."


def status_message(
    confidence: float,
    is_significant: bool,
    winner: str | None,
    total_users: int,
) -> StatusMessage:
    if total_users < MIN_OBSERVATIONS:
        return StatusMessage.NOT_ENOUGH_DATA
    if is_significant and winner:
        return StatusMessage.WINNER_FOUND
    if not is_significant and confidence >= TRENDING_THRESHOLD:
        return StatusMessage.TRENDING
    return StatusMessage.NO_MEANINGFUL_DIFFERENCE
