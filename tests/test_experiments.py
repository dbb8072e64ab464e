import random

import numpy as np
import pytest

from reelrank import experiments
from reelrank.experiments import ExperimentConfig, ExperimentStatus, Variant


def _config(**overrides):
    data = {
        "id": "lambda-test",
        "variants": [Variant("control", {"mmr_lambda": 0.3}), Variant("treatment", {"mmr_lambda": 0.45})],
        "traffic_split": {"control": 0.5, "treatment": 0.5},
        "primary_metric": "click_rate",
        "status": ExperimentStatus.RUNNING,
    }
    data.update(overrides)
    return ExperimentConfig(**data)


def test_config_validation():
    with pytest.raises(ValueError):
        _config(variants=[])
    with pytest.raises(ValueError):
        _config(variants=[Variant("a"), Variant("a")])
    with pytest.raises(ValueError):
        _config(traffic_split={"control": 0.0, "treatment": 0.0})


def test_config_round_trips_through_dict():
    config = _config(secondary_metrics=["saves"], min_films_rated=20)
    restored = ExperimentConfig.from_dict(config.to_dict())

    assert restored == config
    assert restored.metrics == ["click_rate", "saves"]
    assert restored.control.name == "control"


def test_control_falls_back_to_first_variant():
    config = _config(variants=[Variant("a"), Variant("b")], traffic_split={"a": 1, "b": 1})
    assert config.control.name == "a"


def test_is_running_respects_window():
    config = _config(start_date="2024-01-01T00:00:00", end_date="2024-02-01T00:00:00")
    assert config.is_running("2024-01-15T00:00:00")
    assert not config.is_running("2023-12-31T00:00:00")
    assert not config.is_running("2024-03-01T00:00:00")
    assert not _config(status="paused").is_running("2024-01-15T00:00:00")


def test_assign_variant_follows_traffic_split():
    config = _config(traffic_split={"control": 0.8, "treatment": 0.2})
    rng = random.Random(7)
    draws = [experiments.assign_variant(config, rng) for _ in range(2000)]

    share = draws.count("control") / len(draws)
    assert 0.75 < share < 0.85

    only_treatment = _config(traffic_split={"control": 0.0, "treatment": 1.0})
    assert {experiments.assign_variant(only_treatment, rng) for _ in range(50)} == {"treatment"}


def test_assignment_is_sticky_and_gated(fresh_db):
    experiments.create_experiment(_config(min_films_rated=10))

    assert experiments.get_variant_for_user("lambda-test", "newbie", films_rated=3) is None

    first = experiments.get_variant_for_user("lambda-test", "alice", films_rated=50, rng=random.Random(1))
    for seed in range(10):
        again = experiments.get_variant_for_user("lambda-test", "alice", films_rated=50, rng=random.Random(seed))
        assert again.name == first.name
    assert first.get("mmr_lambda") in (0.3, 0.45)

    assert experiments.get_variant_for_user("missing-test", "alice") is None


def test_draft_experiment_assigns_nobody(fresh_db):
    experiments.create_experiment(_config(status="draft"))
    assert experiments.get_variant_for_user("lambda-test", "alice", films_rated=100) is None
    assert experiments.get_running_configs() == []


def test_record_metric_requires_assignment(fresh_db):
    experiments.create_experiment(_config())
    assert not experiments.record_metric("lambda-test", "ghost", "click_rate", 1.0)

    experiments.get_variant_for_user("lambda-test", "alice")
    assert experiments.record_metric("lambda-test", "alice", "click_rate", 1.0)

    experiments.MetricEvent("lambda-test", "alice", "click_rate", 0.0).apply()
    assert len(fresh_db.load_metrics("lambda-test")) == 2


def test_fifteen_percent_lift_is_reported(fresh_db):
    db = fresh_db
    experiments.create_experiment(_config())
    noise = np.linspace(-0.1, 0.1, 50)

    for i, value in enumerate(0.40 + noise):
        user = f"c{i}"
        db.get_or_create_assignment("lambda-test", user, lambda: "control")
        experiments.record_metric("lambda-test", user, "click_rate", float(value))
    for i, value in enumerate(0.46 + noise[::-1]):
        user = f"t{i}"
        db.get_or_create_assignment("lambda-test", user, lambda: "treatment")
        experiments.record_metric("lambda-test", user, "click_rate", float(value))

    results = experiments.get_test_results("lambda-test")

    assert results.control == "control"
    assert results.variants["control"].users == 50
    assert results.variants["treatment"].metrics["click_rate"].count == 50
    [comparison] = results.comparisons
    assert comparison.variant == "treatment"
    assert comparison.percent_change == pytest.approx(15.0)
    assert comparison.control_mean == pytest.approx(0.40)
    assert comparison.variant_mean == pytest.approx(0.46)
    assert 0.0 <= comparison.p_value <= 1.0
    assert comparison.is_significant == (comparison.p_value < 0.05)
    assert comparison.ci_lower < 0.06 < comparison.ci_upper


def test_results_without_observations_have_no_control():
    results = experiments.compute_results(_config(), [])
    assert results.control is None
    assert results.comparisons == []


def test_results_skip_pairs_without_enough_data():
    observations = [
        {"variant_name": "control", "metric_name": "click_rate", "value": 0.4},
        {"variant_name": "treatment", "metric_name": "click_rate", "value": 0.5},
        {"variant_name": "treatment", "metric_name": "click_rate", "value": 0.6},
    ]
    results = experiments.compute_results(_config(), observations)

    assert results.control == "control"
    assert results.comparisons == []
    assert results.variants["treatment"].metrics["click_rate"].mean == pytest.approx(0.55)


def test_scipy_backend_agrees_with_default():
    observations = [
        {"variant_name": name, "metric_name": "click_rate", "value": v}
        for name, values in (("control", [0.3, 0.4, 0.5, 0.45]), ("treatment", [0.5, 0.55, 0.6, 0.4]))
        for v in values
    ]
    approx = experiments.compute_results(_config(), observations, method="approx").comparisons[0]
    exact = experiments.compute_results(_config(), observations, method="scipy").comparisons[0]

    assert approx.p_value == pytest.approx(exact.p_value, abs=1e-6)
