# cplan/core/enums.py

from enum import Enum


class SpaceKind(str, Enum):
    ATLAS = "atlas"
    PROJECTED = "projected"


class PlannerStatus(str, Enum):
    EXACT = "exact solution"
    APPROXIMATE = "approximate solution"
    TIMEOUT = "timeout"

    @property
    def solved(self) -> bool:
        return self in (PlannerStatus.EXACT, PlannerStatus.APPROXIMATE)


class RunState(str, Enum):
    """Phases of an experiment run, in the order the driver walks them."""
    INIT = "init"
    CONSTRAINT_PARSED = "constraint parsed"
    SPACE_CONFIGURED = "space configured"
    PLANNED = "planned"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REPORT_EMITTED = "report emitted"


__all__ = [
    "SpaceKind",
    "PlannerStatus",
    "RunState",
]
