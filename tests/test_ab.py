"""Tests for deterministic A/B assignment and experiment definitions."""

import pytest

from src.ab.assignment import assign_all, assign_variant, bucket
from src.ab.experiment import (
    CHECKOUT_CTA_EXPERIMENT,
    Experiment,
    ExperimentStatus,
    Goal,
    Variant,
)
from src.collector.schemas import EventType
from src.simulator.config import SimulationConfig
from src.simulator.engine import generate_events


def _experiment(experiment_id="test", variants=None, **kwargs):
    if variants is None:
        variants = (Variant("a", "A", 0.5), Variant("b", "B", 0.5))
    return Experiment(experiment_id=experiment_id, site_id="site", name="Test", variants=variants, **kwargs)


class TestExperimentDefinition:
    def test_valid_experiment(self):
        assert len(_experiment().variants) == 2

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            _experiment(variants=(Variant("a", "A", 0.3), Variant("b", "B", 0.3)))

    def test_needs_at_least_two_variants(self):
        with pytest.raises(ValueError, match="at least 2"):
            _experiment(variants=(Variant("a", "A", 1.0),))

    def test_variant_ids_must_be_unique(self):
        with pytest.raises(ValueError, match="unique"):
            _experiment(variants=(Variant("a", "A", 0.5), Variant("a", "B", 0.5)))

    def test_goal_ids_must_be_unique(self):
        with pytest.raises(ValueError, match="Goal ids"):
            _experiment(goals=(Goal("g", "One"), Goal("g", "Two")))

    def test_traffic_percentage_bounds(self):
        with pytest.raises(ValueError, match="traffic_percentage"):
            _experiment(traffic_percentage=120)

    def test_variant_name_lookup(self):
        exp = _experiment()
        assert exp.variant_name("b") == "B"
        assert exp.variant_name("zzz") == "zzz"

    def test_default_experiment_valid(self):
        assert CHECKOUT_CTA_EXPERIMENT.experiment_id == "exp_checkout_cta_v1"
        assert [v.id for v in CHECKOUT_CTA_EXPERIMENT.variants] == ["control", "variant_a"]
        assert CHECKOUT_CTA_EXPERIMENT.goal("goal_checkout").is_primary


class TestAssignment:
    def test_bucket_range(self):
        values = [bucket(f"k{i}") for i in range(1000)]
        assert all(0.0 <= v < 1.0 for v in values)

    def test_deterministic(self):
        """Same visitor + experiment always gets the same variant."""
        exp = CHECKOUT_CTA_EXPERIMENT
        assert assign_variant(exp, "sess_001") == assign_variant(exp, "sess_001")

    def test_different_visitors_can_get_different_variants(self):
        exp = CHECKOUT_CTA_EXPERIMENT
        variants = {assign_variant(exp, f"sess_{i}") for i in range(100)}
        assert variants == {"control", "variant_a"}

    def test_roughly_even_split(self):
        """50/50 experiment should produce roughly even split."""
        exp = CHECKOUT_CTA_EXPERIMENT
        assignments = [assign_variant(exp, f"sess_{i}") for i in range(10000)]
        control_count = assignments.count("control")
        # Should be within 45%-55% for 10k visitors
        assert 4500 <= control_count <= 5500

    def test_different_experiment_different_assignment(self):
        exp_a, exp_b = _experiment("exp_a"), _experiment("exp_b")
        assert any(
            assign_variant(exp_a, f"sess_{i}") != assign_variant(exp_b, f"sess_{i}")
            for i in range(100)
        )

    def test_uneven_split(self):
        """90/10 split should produce roughly 90% in the heavy variant."""
        exp = _experiment("uneven", variants=(Variant("heavy", "H", 0.9), Variant("light", "L", 0.1)))
        assignments = [assign_variant(exp, f"sess_{i}") for i in range(10000)]
        assert 8500 <= assignments.count("heavy") <= 9500

    def test_partial_traffic(self):
        exp = _experiment(traffic_percentage=20)
        assignments = [assign_variant(exp, f"sess_{i}") for i in range(10000)]
        entered = sum(1 for a in assignments if a is not None)
        assert 1700 <= entered <= 2300

    def test_raising_traffic_keeps_existing_assignments(self):
        low = _experiment(traffic_percentage=20)
        high = _experiment(traffic_percentage=60)
        for i in range(2000):
            before = assign_variant(low, f"sess_{i}")
            if before is not None:
                assert assign_variant(high, f"sess_{i}") == before

    def test_assign_all_skips_stopped_experiments(self):
        running = _experiment("running")
        paused = _experiment("paused", status=ExperimentStatus.PAUSED)
        assignments = assign_all([running, paused], "sess_1")
        assert list(assignments) == ["running"]


class TestSimulatorWithExperiment:
    SMALL_CONFIG = SimulationConfig(num_sessions=500, days=7, seed=42)

    def test_every_event_carries_assignment(self):
        events = generate_events(self.SMALL_CONFIG, [CHECKOUT_CTA_EXPERIMENT])
        for e in events:
            assert e.experiment_ids == ["exp_checkout_cta_v1"]
            assert e.variant_ids[0] in ("control", "variant_a")

    def test_assignment_matches_bucketing(self):
        events = generate_events(self.SMALL_CONFIG, [CHECKOUT_CTA_EXPERIMENT])
        for e in events[:200]:
            assert e.variant_ids[0] == assign_variant(CHECKOUT_CTA_EXPERIMENT, e.session_id)

    def test_goal_events_reference_experiment(self):
        events = generate_events(self.SMALL_CONFIG, [CHECKOUT_CTA_EXPERIMENT])
        goal_events = [e for e in events if e.event_type == EventType.EXPERIMENT_GOAL]
        assert len(goal_events) > 0
        goal_ids = {g.id for g in CHECKOUT_CTA_EXPERIMENT.goals}
        for e in goal_events:
            assert e.data["experiment_id"] == "exp_checkout_cta_v1"
            assert e.data["variant_id"] == e.variant_ids[0]
            assert e.data["goal_id"] in goal_ids

    def test_treatment_has_higher_checkout_rate(self):
        """Treatment sessions should convert at a higher rate due to uplift."""
        events = generate_events(
            SimulationConfig(num_sessions=2000, days=7, seed=42), [CHECKOUT_CTA_EXPERIMENT],
        )
        session_variant = {e.session_id: e.variant_ids[0] for e in events}
        converted = {e.session_id for e in events if e.event_type == EventType.CONVERSION}

        rates = {}
        for variant in ("control", "variant_a"):
            members = [s for s, v in session_variant.items() if v == variant]
            rates[variant] = sum(1 for s in members if s in converted) / max(len(members), 1)
        assert rates["variant_a"] >= rates["control"]

    def test_other_site_experiment_ignored(self):
        foreign = _experiment("foreign")
        events = generate_events(self.SMALL_CONFIG, [foreign])
        assert all(e.experiment_ids == [] for e in events)

    def test_no_experiment_means_no_goal_events(self):
        events = generate_events(self.SMALL_CONFIG)
        assert not any(e.event_type == EventType.EXPERIMENT_GOAL for e in events)
        assert all(e.experiment_ids == [] for e in events)
