"""Deterministic A/B experiment assignment.

Assignment is hash-based: given the same (experiment_id, visitor_id) pair,
the visitor always gets the same variant. No randomness involved; the
hash output is mapped to variant buckets based on configured weights.

Traffic allocation uses a second, independent hash so that changing the
share of visitors entered into a test never reshuffles the ones already in.
"""

import hashlib

from src.ab.experiment import Experiment, ExperimentStatus


def bucket(key: str) -> float:
    """Stable bucket value in [0.0, 1.0) for a key."""
    hash_bytes = hashlib.sha256(key.encode()).digest()
    # Use first 8 bytes as unsigned int, normalize to [0, 1)
    return int.from_bytes(hash_bytes[:8], "big") / (2**64)


def is_in_traffic(experiment: Experiment, visitor_id: str) -> bool:
    if experiment.traffic_percentage >= 100:
        return True
    return bucket(f"{experiment.experiment_id}_traffic:{visitor_id}") * 100 < experiment.traffic_percentage


def assign_variant(experiment: Experiment, visitor_id: str) -> str | None:
    """Assign a visitor to a variant id, or None when left out of the test.

    Uses SHA-256 of (experiment_id + visitor_id) to produce a stable bucket
    value in [0.0, 1.0), then maps it to a variant based on cumulative
    traffic weights.
    """
    if not is_in_traffic(experiment, visitor_id):
        return None

    value = bucket(f"{experiment.experiment_id}:{visitor_id}")
    cumulative = 0.0
    for variant in experiment.variants:
        cumulative += variant.weight
        if value < cumulative:
            return variant.id

    # Fallback to last variant (handles floating point edge cases)
    return experiment.variants[-1].id


def assign_all(experiments: list[Experiment], visitor_id: str) -> dict[str, str]:
    """experiment_id -> variant_id for every running experiment the visitor is in."""
    assignments = {}
    for experiment in experiments:
        if experiment.status is not ExperimentStatus.RUNNING:
            continue
        variant_id = assign_variant(experiment, visitor_id)
        if variant_id is not None:
            assignments[experiment.experiment_id] = variant_id
    return assignments
