"""
Run configuration for constrained planning experiments.

All tunables live in frozen Pydantic models so that a run's parameters can be
dumped next to its outputs (``used_config.yml``) and reloaded verbatim.

Exports:
    - AtlasParameters: chart-based state space tuning (ρ, α, ε, δ, ...).
    - ProjectionParameters: projection-based state space tuning (δ).
    - ConstraintSettings: Newton projection tolerance and iteration cap.
    - BoundsConfig, PlannerSettings, TraversalSettings.
    - ExperimentConfig: the root model.
    - load_experiment_config: YAML + dot-notation overrides -> ExperimentConfig.
"""

from pathlib import Path
from typing import List, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cplan.core.utils import load_config

__all__ = [
    "AtlasParameters",
    "ProjectionParameters",
    "ConstraintSettings",
    "BoundsConfig",
    "PlannerSettings",
    "TraversalSettings",
    "ExperimentConfig",
    "load_experiment_config",
]


class AtlasParameters(BaseModel):
    """Tuning knobs of the chart-based state space."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    exploration: float = Field(0.5, ge=0.0, lt=1.0,
                               description="Probability of sampling past a chart's validity radius")
    rho: float = Field(0.5, gt=0.0, description="Chart validity radius ρ")
    alpha: float = Field(np.pi / 8, gt=0.0, lt=np.pi / 2,
                         description="Maximum angle α between a chart's tangent space and the manifold's")
    epsilon: float = Field(0.2, gt=0.0,
                           description="Maximum distance ε between a chart's tangent plane and the manifold")
    delta: float = Field(0.02, gt=0.0, description="Traversal step size δ")
    max_charts_per_extension: int = Field(200, ge=1,
                                          description="Ceiling on charts created by one sampling/traversal call")

    def rho_s(self, manifold_dim: int) -> float:
        """Sampling radius: ρ / (1 - exploration)^(1/k)."""
        return self.rho / (1.0 - self.exploration) ** (1.0 / max(1, manifold_dim))


class ProjectionParameters(BaseModel):
    """Tuning knobs of the projection-based state space."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    delta: float = Field(0.02, gt=0.0, description="Traversal step size δ")


class ConstraintSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tolerance: float = Field(1e-6, gt=0.0, description="Constraint satisfaction tolerance |F(x)|")
    max_iterations: int = Field(50, ge=1, description="Newton projection iteration cap")


class BoundsConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    low: float = -10.0
    high: float = 10.0

    @model_validator(mode="after")
    def check_order(self):
        if not self.low < self.high:
            raise ValueError(f"bounds.low ({self.low}) must be below bounds.high ({self.high})")
        return self


class PlannerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    projected_range: float = Field(0.7, gt=0.0,
                                   description="Planner range used with the projected space")
    goal_bias: float = Field(0.05, ge=0.0, le=1.0)
    prm_neighbors: int = Field(10, ge=1)
    sampler_attempts: int = Field(100, ge=1,
                                  description="Tries per valid-state sample before giving up")


class TraversalSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    lambda_: float = Field(2.0, alias="lambda", gt=1.0,
                           description="Step budget factor: ceil(λ·distance/δ) + 1 steps")
    max_steps: Optional[int] = Field(None, ge=1,
                                     description="Fixed step budget; overrides λ when set")


class ExperimentConfig(BaseModel):
    """Root configuration of a planning experiment."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    bounds: BoundsConfig = Field(default_factory=BoundsConfig)
    atlas: AtlasParameters = Field(default_factory=AtlasParameters)
    projection: ProjectionParameters = Field(default_factory=ProjectionParameters)
    constraint: ConstraintSettings = Field(default_factory=ConstraintSettings)
    planner: PlannerSettings = Field(default_factory=PlannerSettings)
    traversal: TraversalSettings = Field(default_factory=TraversalSettings)
    simplify: bool = Field(False, description="Drop waypoints a direct traversal can skip")
    seed: Optional[int] = None

    @field_validator("seed", mode="before")
    @classmethod
    def seed_must_be_int(cls, v):
        if isinstance(v, bool):
            raise ValueError("seed must be an integer")
        return v

    def dump(self) -> dict:
        """Plain-dict view, YAML-safe, with aliases (``lambda``) restored."""
        return self.model_dump(mode="json", by_alias=True)


def load_experiment_config(
    config_file: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None,
) -> ExperimentConfig:
    """
    Build an ExperimentConfig from an optional YAML file plus overrides.

    Args:
        config_file: YAML file; missing keys fall back to model defaults.
        overrides: ``key.sub=value`` strings applied after the file.

    Raises:
        FileNotFoundError: If ``config_file`` is given but does not exist.
        pydantic.ValidationError: If a value is out of range.
    """
    raw, _ = load_config(config_file, overrides)
    return ExperimentConfig.model_validate(raw)
