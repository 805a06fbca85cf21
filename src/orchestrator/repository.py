"""Read-only access to cohort and experiment definitions.

Definitions are owned by the dashboard's persistence layer. The service
only needs lookups by id; ownership is checked by the service itself so
that a lookup never silently returns another site's entity.
"""

from collections.abc import Iterable
from typing import Protocol

from src.ab.experiment import Experiment
from src.cohorts.rules import Cohort


class CohortRepository(Protocol):
    def get_cohort(self, cohort_id: str) -> Cohort | None:
        ...


class ExperimentRepository(Protocol):
    def get_experiment(self, experiment_id: str) -> Experiment | None:
        ...


class InMemoryCohortRepository:
    def __init__(self, cohorts: Iterable[Cohort] = ()):
        self._cohorts = {c.id: c for c in cohorts}

    def add(self, cohort: Cohort) -> None:
        self._cohorts[cohort.id] = cohort

    def get_cohort(self, cohort_id: str) -> Cohort | None:
        return self._cohorts.get(cohort_id)


class InMemoryExperimentRepository:
    def __init__(self, experiments: Iterable[Experiment] = ()):
        self._experiments = {e.experiment_id: e for e in experiments}

    def add(self, experiment: Experiment) -> None:
        self._experiments[experiment.experiment_id] = experiment

    def get_experiment(self, experiment_id: str) -> Experiment | None:
        return self._experiments.get(experiment_id)
