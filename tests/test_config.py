from pathlib import Path

import numpy as np
import pytest
import yaml
from pydantic import ValidationError

from cplan.core.config import AtlasParameters, BoundsConfig, ExperimentConfig, load_experiment_config
from cplan.core.utils import apply_overrides, load_config

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "default_plan.yml"


def test_defaults():
    cfg = ExperimentConfig()
    assert cfg.atlas.exploration == 0.5
    assert cfg.atlas.rho == 0.5
    assert cfg.atlas.alpha == pytest.approx(np.pi / 8)
    assert cfg.atlas.epsilon == 0.2
    assert cfg.atlas.delta == 0.02
    assert cfg.atlas.max_charts_per_extension == 200
    assert cfg.projection.delta == 0.02
    assert cfg.planner.projected_range == 0.7
    assert cfg.bounds.low == -10.0 and cfg.bounds.high == 10.0
    assert cfg.traversal.lambda_ == 2.0
    assert cfg.traversal.max_steps is None


def test_default_file_matches_model_defaults():
    assert load_experiment_config(DEFAULT_CONFIG) == ExperimentConfig()


def test_overrides_are_typed():
    cfg = load_experiment_config(None, ["atlas.rho=0.3", "traversal.lambda=3", "simplify=true", "seed=7"])
    assert cfg.atlas.rho == pytest.approx(0.3)
    assert cfg.traversal.lambda_ == pytest.approx(3.0)
    assert cfg.simplify is True
    assert cfg.seed == 7


@pytest.mark.parametrize("override", [
    "atlas.exploration=1.0",
    "atlas.rho=0",
    "traversal.lambda=1.0",
    "bounds.low=20",
    "atlas.unknown=1",
    "seed=true",
])
def test_invalid_values_rejected(override):
    with pytest.raises(ValidationError):
        load_experiment_config(None, [override])


def test_config_is_frozen():
    cfg = ExperimentConfig()
    with pytest.raises(ValidationError):
        cfg.atlas.rho = 1.0


def test_dump_round_trips_through_yaml(tmp_path):
    cfg = load_experiment_config(None, ["traversal.max_steps=40", "atlas.epsilon=0.1"])
    dumped = cfg.dump()
    assert "lambda" in dumped["traversal"]
    path = tmp_path / "used_config.yml"
    path.write_text(yaml.safe_dump(dumped))
    assert load_experiment_config(path) == cfg


def test_bounds_order():
    with pytest.raises(ValidationError):
        BoundsConfig(low=1.0, high=1.0)


def test_rho_s_grows_with_exploration():
    assert AtlasParameters(exploration=0.75).rho_s(1) == pytest.approx(2.0)
    assert AtlasParameters(exploration=0.5).rho_s(2) == pytest.approx(0.5 * np.sqrt(2))


def test_apply_overrides_nested():
    cfg = apply_overrides({"a": {"b": 1}}, ["a.c=2.5", "d=text"])
    assert cfg == {"a": {"b": 1, "c": 2.5}, "d": "text"}
    with pytest.raises(ValueError):
        apply_overrides({}, ["no-equals-sign"])


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")
