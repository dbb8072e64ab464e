"""
A/B experiments: sticky assignment, raw metric log and Welch comparisons.

Variants carry a free-form ``params`` mapping (mmr_lambda, exploration_rate,
source_weights, quality_gate_threshold, diversity_top_k). That mapping is the
only open-ended record in the engine.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

import numpy as np

from .database import (
    save_ab_test,
    load_ab_test,
    load_running_ab_tests,
    get_assignment,
    get_or_create_assignment,
    load_assignments,
    append_metric,
    load_metrics,
)
from .stats import welch_t_test
from .utils import utc_now_iso
from .config import AB_CONTROL_NAME, AB_SIGNIFICANCE_LEVEL

logger = logging.getLogger(__name__)

VARIANT_PARAM_KEYS = ("mmr_lambda", "exploration_rate", "source_weights", "quality_gate_threshold", "diversity_top_k")


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class Variant:
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        unknown = set(self.params) - set(VARIANT_PARAM_KEYS)
        if unknown:
            logger.warning(f"Variant {self.name} has unrecognized params: {sorted(unknown)}")

    def get(self, key: str, default=None):
        return self.params.get(key, default)


@dataclass
class ExperimentConfig:
    id: str
    variants: list[Variant]
    traffic_split: dict[str, float]
    primary_metric: str
    test_name: str = ""
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.DRAFT
    start_date: str | None = None
    end_date: str | None = None
    min_films_rated: int = 0
    secondary_metrics: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.variants:
            raise ValueError(f"Experiment {self.id} needs at least one variant")
        names = [v.name for v in self.variants]
        if len(set(names)) != len(names):
            raise ValueError(f"Experiment {self.id} has duplicate variant names: {names}")
        if sum(max(0.0, float(self.traffic_split.get(n, 0.0))) for n in names) <= 0:
            raise ValueError(f"Experiment {self.id} has no positive traffic weight")
        self.status = ExperimentStatus(self.status)

    @property
    def metrics(self) -> list[str]:
        return [self.primary_metric] + [m for m in self.secondary_metrics if m != self.primary_metric]

    @property
    def control(self) -> Variant:
        for variant in self.variants:
            if variant.name.lower() == AB_CONTROL_NAME:
                return variant
        return self.variants[0]

    def variant(self, name: str) -> Variant | None:
        return next((v for v in self.variants if v.name == name), None)

    def is_running(self, now_iso: str | None = None) -> bool:
        now_iso = now_iso or utc_now_iso()
        if self.status != ExperimentStatus.RUNNING:
            return False
        if self.start_date and now_iso < self.start_date:
            return False
        if self.end_date and now_iso > self.end_date:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'test_name': self.test_name,
            'description': self.description,
            'status': self.status.value,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'variants': [{'name': v.name, 'params': v.params} for v in self.variants],
            'traffic_split': self.traffic_split,
            'min_films_rated': self.min_films_rated,
            'primary_metric': self.primary_metric,
            'secondary_metrics': self.secondary_metrics,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExperimentConfig":
        return cls(
            id=data['id'],
            variants=[Variant(v['name'], dict(v.get('params') or {})) for v in data.get('variants') or []],
            traffic_split={k: float(w) for k, w in (data.get('traffic_split') or {}).items()},
            primary_metric=data['primary_metric'],
            test_name=data.get('test_name') or "",
            description=data.get('description') or "",
            status=data.get('status') or ExperimentStatus.DRAFT.value,
            start_date=data.get('start_date'),
            end_date=data.get('end_date'),
            min_films_rated=int(data.get('min_films_rated') or 0),
            secondary_metrics=list(data.get('secondary_metrics') or []),
        )


def assign_variant(config: ExperimentConfig, rng: random.Random | None = None) -> str:
    """Weighted draw over the traffic split. Falls back to the first variant."""
    rng = rng or random.Random()
    weights = [max(0.0, float(config.traffic_split.get(v.name, 0.0))) for v in config.variants]
    roll = rng.random() * sum(weights)
    cumulative = 0.0
    for variant, weight in zip(config.variants, weights):
        cumulative += weight
        if weight > 0 and roll < cumulative:
            return variant.name
    return config.variants[0].name


def create_experiment(config: ExperimentConfig) -> None:
    save_ab_test(config.to_dict())
    logger.info(f"Saved experiment {config.id} ({config.status.value}, {len(config.variants)} variants)")


def get_experiment(test_id: str) -> ExperimentConfig | None:
    data = load_ab_test(test_id)
    return ExperimentConfig.from_dict(data) if data else None


def get_running_configs(now_iso: str | None = None) -> list[ExperimentConfig]:
    return [ExperimentConfig.from_dict(d) for d in load_running_ab_tests(now_iso)]


def get_variant_for_user(
    test_id: str,
    user_id: str,
    films_rated: int | None = None,
    rng: random.Random | None = None,
    config: ExperimentConfig | None = None,
) -> Variant | None:
    """
    The user's sticky variant, assigning one on first call.

    Returns None when the test is unknown or not running, or when the user
    does not meet ``min_films_rated``. An existing assignment is always honored.
    """
    config = config or get_experiment(test_id)
    if config is None or not config.is_running():
        return None

    existing = get_assignment(test_id, user_id)
    if existing is None and config.min_films_rated and (films_rated or 0) < config.min_films_rated:
        logger.debug(f"{user_id} has rated {films_rated} films, below {config.min_films_rated} for {test_id}")
        return None

    name = existing or get_or_create_assignment(test_id, user_id, lambda: assign_variant(config, rng))
    variant = config.variant(name)
    if variant is None:
        logger.warning(f"Assignment {name} for {user_id} is not a variant of {test_id}")
    return variant


def record_metric(test_id: str, user_id: str, metric_name: str, value: float) -> bool:
    """Append one observation for the user's assigned variant. Unassigned users are skipped."""
    variant = get_assignment(test_id, user_id)
    if variant is None:
        logger.debug(f"{user_id} has no assignment in {test_id}, metric {metric_name} not recorded")
        return False
    append_metric(test_id, user_id, variant, metric_name, value)
    return True


@dataclass
class MetricEvent:
    """Fire-and-forget metric write, consumed by FeedbackWorker."""
    test_id: str
    user_id: str
    metric_name: str
    value: float

    def apply(self) -> None:
        record_metric(self.test_id, self.user_id, self.metric_name, self.value)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class MetricSummary:
    mean: float
    std: float
    count: int


@dataclass
class VariantResult:
    name: str
    users: int = 0
    metrics: dict[str, MetricSummary] = field(default_factory=dict)


@dataclass
class Comparison:
    variant: str
    metric: str
    control_mean: float
    variant_mean: float
    percent_change: float
    t_statistic: float
    degrees_of_freedom: float
    p_value: float
    ci_lower: float
    ci_upper: float
    is_significant: bool


@dataclass
class ExperimentResults:
    test_id: str
    control: str | None
    variants: dict[str, VariantResult] = field(default_factory=dict)
    comparisons: list[Comparison] = field(default_factory=list)


def compute_results(
    config: ExperimentConfig,
    observations: Iterable[Mapping[str, Any]],
    assignments: Mapping[str, str] | None = None,
    method: str | None = None,
) -> ExperimentResults:
    """
    Summarize raw observations per variant and compare each variant with control.

    ``observations`` are rows with variant_name, metric_name and value. Pairs
    without enough data are left out of ``comparisons`` instead of being
    reported with a meaningless p-value.
    """
    values: dict[str, dict[str, list[float]]] = {v.name: {} for v in config.variants}
    for row in observations:
        per_variant = values.setdefault(row['variant_name'], {})
        per_variant.setdefault(row['metric_name'], []).append(float(row['value']))

    users: dict[str, int] = {}
    for variant_name in (assignments or {}).values():
        users[variant_name] = users.get(variant_name, 0) + 1

    results = ExperimentResults(test_id=config.id, control=None)
    for name, metrics in values.items():
        result = VariantResult(name=name, users=users.get(name, 0))
        for metric, samples in metrics.items():
            arr = np.asarray(samples, dtype=float)
            result.metrics[metric] = MetricSummary(mean=float(arr.mean()), std=float(arr.std()), count=len(arr))
        results.variants[name] = result

    if not any(values.values()):
        logger.info(f"No observations for {config.id}; control cannot be identified")
        return results

    control = config.control.name
    results.control = control
    control_values = values.get(control, {})

    for variant in config.variants:
        if variant.name == control:
            continue
        for metric in config.metrics:
            test = welch_t_test(values[variant.name].get(metric, []), control_values.get(metric, []), method)
            if test is None:
                logger.debug(f"Skipping {variant.name} vs {control} on {metric}: insufficient data")
                continue
            percent = (test.mean_diff / test.mean_b * 100.0) if test.mean_b != 0 else 0.0
            results.comparisons.append(Comparison(
                variant=variant.name,
                metric=metric,
                control_mean=test.mean_b,
                variant_mean=test.mean_a,
                percent_change=percent,
                t_statistic=test.t_statistic,
                degrees_of_freedom=test.degrees_of_freedom,
                p_value=test.p_value,
                ci_lower=test.ci_lower,
                ci_upper=test.ci_upper,
                is_significant=test.p_value < AB_SIGNIFICANCE_LEVEL,
            ))
    return results


def get_test_results(test_id: str, method: str | None = None) -> ExperimentResults | None:
    config = get_experiment(test_id)
    if config is None:
        return None
    return compute_results(config, load_metrics(test_id), load_assignments(test_id), method)
