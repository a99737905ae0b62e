"""
Reference sampling-based planners over a manifold state space.

Each planner steers with ``ManifoldTraversal.extend``, so every tree or
roadmap edge is a walk on the manifold whose states were all checked valid.
Planners own the configurations they store until ``clear()``.

Exports:
    - RRT: goal-biased single tree; reports approximate solutions.
    - RRTConnect: bidirectional trees with greedy connection.
    - PRM: k-nearest roadmap, shortest path by Dijkstra.
    - make_planner: name -> planner bound to a PlanningContext.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import dijkstra
from scipy.spatial import cKDTree

from cplan.core.config import PlannerSettings
from cplan.core.enums import PlannerStatus
from cplan.core.errors import UnknownPlannerError
from cplan.core.logging import logger
from cplan.geometry.kernels import nearest_index
from cplan.geometry.states import Configuration
from cplan.planning.context import PlanningContext

__all__ = [
    "Planner",
    "PlannerData",
    "RRT",
    "RRTConnect",
    "PRM",
    "PLANNERS",
    "make_planner",
]


@dataclass
class PlannerData:
    """Planner graph: vertex positions, index-pair edges, string properties."""
    vertices: np.ndarray
    edges: np.ndarray
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def num_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def num_edges(self) -> int:
        return int(self.edges.shape[0])


class Planner(Protocol):
    name: str

    def setup(self) -> None: ...

    def solve(self, time_budget: float) -> PlannerStatus: ...

    def solution_path(self) -> List[Configuration]: ...

    def planner_data(self) -> PlannerData: ...

    def get_diagnostics(self) -> dict: ...

    def clear(self) -> None: ...


class _Tree:
    """Growing tree of configurations with a contiguous position buffer."""

    def __init__(self, dim: int, capacity: int = 256):
        self.states: List[Configuration] = []
        self.parents: List[int] = []
        self._points = np.empty((capacity, dim))

    def __len__(self) -> int:
        return len(self.states)

    def add(self, state: Configuration, parent: int) -> int:
        idx = len(self.states)
        if idx == self._points.shape[0]:
            grown = np.empty((2 * idx, self._points.shape[1]))
            grown[:idx] = self._points
            self._points = grown
        self._points[idx] = state.vector
        self.states.append(state)
        self.parents.append(parent)
        return idx

    def nearest(self, x: np.ndarray) -> int:
        return nearest_index(self._points, len(self.states), np.asarray(x, dtype=np.float64))

    def path_to_root(self, idx: int) -> List[Configuration]:
        """Root-first list of states ending at ``idx``."""
        path = []
        while idx >= 0:
            path.append(self.states[idx])
            idx = self.parents[idx]
        path.reverse()
        return path

    def vertices(self) -> np.ndarray:
        return self._points[:len(self.states)].copy()

    def edges(self, offset: int = 0) -> List[Tuple[int, int]]:
        return [(p + offset, i + offset) for i, p in enumerate(self.parents) if p >= 0]


class _PlannerBase:
    name = "planner"

    def __init__(self, context: PlanningContext, range_: float, settings: Optional[PlannerSettings] = None):
        if range_ <= 0:
            raise ValueError(f"Planner range must be positive, got {range_}")
        self.context = context
        self.space = context.space
        self.range = float(range_)
        self.settings = settings or PlannerSettings()
        self.sampler = None
        self.iterations = 0
        self.properties: Dict[str, str] = {}
        self._owned: List[Configuration] = []
        self._solution: List[Configuration] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(range={self.range:.3f})"

    def setup(self) -> None:
        self.sampler = self.context.allocate_sampler()

    def _own(self, state: Configuration) -> Configuration:
        self._owned.append(state)
        return state

    def _endpoints_valid(self) -> bool:
        for label, state in (("start", self.context.start), ("goal", self.context.goal)):
            if not self.context.is_valid(state.vector):
                logger.warning(f"{self.name}: {label} state is invalid")
                return False
        return True

    def _extend(self, source: Configuration, target: Configuration,
                max_distance: Optional[float]) -> Tuple[Optional[Configuration], bool]:
        """Walk toward ``target``, keeping only the final state."""
        states, reached = self.context.traversal.extend(source, target, max_distance, self.context.is_valid)
        if not states:
            return None, False
        for state in states[:-1]:
            self.space.free_state(state)
        return self._own(states[-1]), reached

    def solution_path(self) -> List[Configuration]:
        """Waypoints of the last solution; owned by the planner until ``clear()``."""
        return list(self._solution)

    def get_diagnostics(self) -> dict:
        data = self.planner_data()
        return {
            "planner": self.name,
            "iterations": self.iterations,
            "vertices": data.num_vertices,
            "edges": data.num_edges,
            "validity_checks": self.context.validity_checks,
            **self.properties,
        }

    def clear(self) -> None:
        for state in self._owned:
            self.space.free_state(state)
        self._owned = []
        self._solution = []
        self.properties = {}
        self.iterations = 0
        self._reset()

    def _reset(self) -> None:
        raise NotImplementedError

    def planner_data(self) -> PlannerData:
        raise NotImplementedError


class RRT(_PlannerBase):
    """Goal-biased rapidly-exploring random tree."""
    name = "RRT"

    def __init__(self, context: PlanningContext, range_: float, settings: Optional[PlannerSettings] = None):
        super().__init__(context, range_, settings)
        self._tree = _Tree(self.space.ambient_dim)

    def _reset(self) -> None:
        self._tree = _Tree(self.space.ambient_dim)

    def setup(self) -> None:
        super().setup()
        if not len(self._tree):
            self._tree.add(self._own(self.space.copy_state(self.context.start)), -1)

    def solve(self, time_budget: float) -> PlannerStatus:
        if not self._endpoints_valid():
            return PlannerStatus.TIMEOUT
        deadline = time.perf_counter() + time_budget
        goal = self.context.goal
        rng = self.space.rng
        best_idx, best_dist = -1, np.inf
        rnd = self.space.alloc_state()
        try:
            while time.perf_counter() < deadline:
                self.iterations += 1
                if rng.random() < self.settings.goal_bias:
                    target = goal
                elif self.sampler.sample(rnd):
                    target = rnd
                else:
                    continue
                near = self._tree.nearest(target.vector)
                new, _ = self._extend(self._tree.states[near], target, self.range)
                if new is None:
                    continue
                idx = self._tree.add(new, near)
                dist = self.space.distance(new, goal)
                if dist < best_dist:
                    best_idx, best_dist = idx, dist
                if dist <= self.space.delta:
                    self._solution = self._tree.path_to_root(idx)
                    if not self.space.equal_states(new, goal):
                        self._solution.append(self._own(self.space.copy_state(goal)))
                    logger.debug(f"RRT: exact solution after {self.iterations} iterations")
                    return PlannerStatus.EXACT
        finally:
            self.space.free_state(rnd)

        if best_idx < 0:
            return PlannerStatus.TIMEOUT
        self._solution = self._tree.path_to_root(best_idx)
        self.properties["approx goal distance REAL"] = f"{best_dist:.6f}"
        logger.debug(f"RRT: approximate solution, {best_dist:.4f} from goal")
        return PlannerStatus.APPROXIMATE

    def planner_data(self) -> PlannerData:
        return PlannerData(
            self._tree.vertices(),
            np.array(self._tree.edges(), dtype=np.int64).reshape(-1, 2),
            dict(self.properties),
        )


class RRTConnect(_PlannerBase):
    """Bidirectional RRT: grow one tree, then greedily connect the other to it."""
    name = "RRTConnect"

    def __init__(self, context: PlanningContext, range_: float, settings: Optional[PlannerSettings] = None):
        super().__init__(context, range_, settings)
        self._reset()

    def _reset(self) -> None:
        self._start_tree = _Tree(self.space.ambient_dim)
        self._goal_tree = _Tree(self.space.ambient_dim)

    def setup(self) -> None:
        super().setup()
        if not len(self._start_tree):
            self._start_tree.add(self._own(self.space.copy_state(self.context.start)), -1)
            self._goal_tree.add(self._own(self.space.copy_state(self.context.goal)), -1)

    def _connect(self, tree: _Tree, target: Configuration) -> Tuple[int, bool]:
        near = tree.nearest(target.vector)
        new, reached = self._extend(tree.states[near], target, None)
        if new is None:
            return -1, False
        return tree.add(new, near), reached

    def solve(self, time_budget: float) -> PlannerStatus:
        if not self._endpoints_valid():
            return PlannerStatus.TIMEOUT
        deadline = time.perf_counter() + time_budget
        grow, other = self._start_tree, self._goal_tree
        rnd = self.space.alloc_state()
        try:
            while time.perf_counter() < deadline:
                self.iterations += 1
                if self.sampler.sample(rnd):
                    near = grow.nearest(rnd.vector)
                    new, _ = self._extend(grow.states[near], rnd, self.range)
                    if new is not None:
                        new_idx = grow.add(new, near)
                        other_idx, reached = self._connect(other, new)
                        if reached:
                            self._join(grow, new_idx, other, other_idx)
                            logger.debug(f"RRTConnect: trees connected after {self.iterations} iterations")
                            return PlannerStatus.EXACT
                grow, other = other, grow
        finally:
            self.space.free_state(rnd)
        return PlannerStatus.TIMEOUT

    def _join(self, grow: _Tree, grow_idx: int, other: _Tree, other_idx: int) -> None:
        # The connecting tree's last node is a copy of grow's newest node.
        head = grow.path_to_root(grow_idx)
        tail = other.path_to_root(other_idx)[:-1]
        tail.reverse()
        path = head + tail
        if grow is self._goal_tree:
            path.reverse()
        self._solution = path

    def planner_data(self) -> PlannerData:
        offset = len(self._start_tree)
        vertices = np.vstack([self._start_tree.vertices(), self._goal_tree.vertices()])
        edges = self._start_tree.edges() + self._goal_tree.edges(offset)
        return PlannerData(vertices, np.array(edges, dtype=np.int64).reshape(-1, 2), dict(self.properties))


class PRM(_PlannerBase):
    """Probabilistic roadmap with k-nearest connections.

    Vertices are added in batches; each new vertex is linked to its k nearest
    neighbours by a valid manifold walk. Start is vertex 0 and goal vertex 1.
    """
    name = "PRM"
    batch_size = 16

    def __init__(self, context: PlanningContext, range_: float, settings: Optional[PlannerSettings] = None):
        super().__init__(context, range_, settings)
        self._reset()

    def _reset(self) -> None:
        self._vertices: List[Configuration] = []
        self._edges: List[Tuple[int, int, float]] = []

    def setup(self) -> None:
        super().setup()
        if not self._vertices:
            self._vertices.append(self._own(self.space.copy_state(self.context.start)))
            self._vertices.append(self._own(self.space.copy_state(self.context.goal)))

    def _linkable(self, a: Configuration, b: Configuration) -> bool:
        states, reached = self.context.traversal.extend(a, b, None, self.context.is_valid)
        for state in states:
            self.space.free_state(state)
        return reached

    def _shortest_path(self) -> Optional[List[int]]:
        n = len(self._vertices)
        if not self._edges:
            return None
        rows, cols, weights = zip(*self._edges)
        graph = csr_matrix((weights, (rows, cols)), shape=(n, n))
        dist, pred = dijkstra(graph, directed=False, indices=0, return_predecessors=True)
        if not np.isfinite(dist[1]):
            return None
        path = [1]
        while path[-1] != 0:
            path.append(int(pred[path[-1]]))
        path.reverse()
        return path

    def solve(self, time_budget: float) -> PlannerStatus:
        if not self._endpoints_valid():
            return PlannerStatus.TIMEOUT
        deadline = time.perf_counter() + time_budget
        k = self.settings.prm_neighbors
        pending = [0, 1] if not self._edges else []
        while time.perf_counter() < deadline:
            while len(pending) < self.batch_size and time.perf_counter() < deadline:
                self.iterations += 1
                state = self.space.alloc_state()
                if self.sampler.sample(state):
                    self._vertices.append(self._own(state))
                    pending.append(len(self._vertices) - 1)
                else:
                    self.space.free_state(state)

            points = np.vstack([v.vector for v in self._vertices])
            index = cKDTree(points)
            for i in pending:
                _, neighbours = index.query(points[i], k=min(k + 1, len(points)))
                for j in np.atleast_1d(neighbours):
                    j = int(j)
                    if j == i:
                        continue
                    dist = float(np.linalg.norm(points[i] - points[j]))
                    if dist == 0.0 or dist > self.range or not self._linkable(self._vertices[i], self._vertices[j]):
                        continue
                    self._edges.append((i, j, dist))
                if time.perf_counter() >= deadline:
                    break
            pending = []

            path = self._shortest_path()
            if path is not None:
                self._solution = [self._vertices[i] for i in path]
                logger.debug(f"PRM: start and goal connected with {len(self._vertices)} vertices")
                return PlannerStatus.EXACT
        return PlannerStatus.TIMEOUT

    def planner_data(self) -> PlannerData:
        if self._vertices:
            vertices = np.vstack([v.vector for v in self._vertices])
        else:
            vertices = np.empty((0, self.space.ambient_dim))
        edges = np.array([(i, j) for i, j, _ in self._edges], dtype=np.int64).reshape(-1, 2)
        return PlannerData(vertices, edges, dict(self.properties))


PLANNERS = {
    "RRT": RRT,
    "RRTConnect": RRTConnect,
    "PRM": PRM,
}


def make_planner(
    name: str,
    context: PlanningContext,
    range_: float,
    settings: Optional[PlannerSettings] = None,
) -> Planner:
    """
    Build a registered planner by (case-insensitive) name.

    Raises:
        UnknownPlannerError: If ``name`` is not registered.
    """
    lookup = {key.lower(): cls for key, cls in PLANNERS.items()}
    cls = lookup.get(name.lower())
    if cls is None:
        raise UnknownPlannerError(f"Unknown planner {name!r}; choose from {', '.join(PLANNERS)}")
    return cls(context, range_, settings)
