from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, Iterator, List, NamedTuple, Optional, Set, Tuple

from pygame.math import Vector2

from ..utils.math2d import _torus_delta

if TYPE_CHECKING:
    from .agent import Agent


class Neighbor(NamedTuple):
    agent: "Agent"
    dx: float
    dy: float
    dist_sq: float


class SpatialGrid:
    """Uniform bucket grid over agent positions.

    On a torus the cell size is stretched so the columns and rows tile the
    world exactly; otherwise keys are unbounded so agents that wander outside
    the bounds are still indexed. Buckets hold agent references captured at
    rebuild time; queries always measure against live positions, and
    ``slack`` widens the candidate search by how far agents may have moved
    since the rebuild.
    """

    def __init__(self, cell_size: float, width: float, height: float, wraparound: bool) -> None:
        self._width = width
        self._height = height
        self._wraparound = wraparound
        if wraparound:
            self._cols = max(1, int(width // cell_size))
            self._rows = max(1, int(height // cell_size))
            self._cell_w = width / self._cols
            self._cell_h = height / self._rows
        else:
            self._cols = 0
            self._rows = 0
            self._cell_w = cell_size
            self._cell_h = cell_size
        self._cells: Dict[Tuple[int, int], List["Agent"]] = {}
        self._active_keys: List[Tuple[int, int]] = []
        self._count = 0
        self._min_key = (0, 0)
        self._max_key = (0, 0)

    def __len__(self) -> int:
        return self._count

    def clear(self) -> None:
        for key in self._active_keys:
            bucket = self._cells.get(key)
            if bucket:
                bucket.clear()
        self._active_keys.clear()
        self._count = 0

    def insert(self, agent: "Agent") -> None:
        key = self._cell_key(agent.position)
        bucket = self._cells.get(key)
        if bucket is None:
            bucket = []
            self._cells[key] = bucket
            self._active_keys.append(key)
        elif not bucket:
            # Bucket exists but was cleared at the start of this tick; mark it active again.
            self._active_keys.append(key)
        bucket.append(agent)
        if self._count == 0:
            self._min_key = key
            self._max_key = key
        else:
            self._min_key = (min(self._min_key[0], key[0]), min(self._min_key[1], key[1]))
            self._max_key = (max(self._max_key[0], key[0]), max(self._max_key[1], key[1]))
        self._count += 1

    def offset(self, origin: Vector2, target: Vector2) -> Tuple[float, float]:
        dx = target.x - origin.x
        dy = target.y - origin.y
        if self._wraparound:
            dx = _torus_delta(dx, self._width)
            dy = _torus_delta(dy, self._height)
        return dx, dy

    def collect_neighbors(
        self,
        position: Vector2,
        radius: float,
        out: List[Neighbor],
        exclude_id: int | None = None,
        slack: float = 0.0,
    ) -> None:
        """Fill ``out`` with live agents within ``radius`` of ``position``."""

        out.clear()
        if self._count == 0 or radius < 0:
            return
        reach = radius + slack
        range_x = int(math.ceil(reach / self._cell_w))
        range_y = int(math.ceil(reach / self._cell_h))
        radius_sq = radius * radius
        cells = self._cells
        append = out.append

        for key in self._keys_in_range(position, range_x, range_y):
            bucket = cells.get(key)
            if not bucket:
                continue
            for agent in bucket:
                if not agent.alive or agent.id == exclude_id:
                    continue
                dx, dy = self.offset(position, agent.position)
                dist_sq = dx * dx + dy * dy
                if dist_sq <= radius_sq:
                    append(Neighbor(agent, dx, dy, dist_sq))

    def nearest(
        self, position: Vector2, exclude_id: int | None = None, slack: float = 0.0
    ) -> Optional[Neighbor]:
        """Closest live agent to ``position``; ties go to the lower id."""

        if self._count == 0:
            return None
        base_x, base_y = self._raw_key(position)
        min_cell = min(self._cell_w, self._cell_h)
        visited: Set[Tuple[int, int]] | None = set() if self._wraparound else None
        best: Optional[Neighbor] = None

        for ring in range(self._max_ring(base_x, base_y) + 1):
            for key in self._ring_keys(base_x, base_y, ring):
                if visited is not None:
                    key = (key[0] % self._cols, key[1] % self._rows)
                    if key in visited:
                        continue
                    visited.add(key)
                bucket = self._cells.get(key)
                if not bucket:
                    continue
                for agent in bucket:
                    if not agent.alive or agent.id == exclude_id:
                        continue
                    dx, dy = self.offset(position, agent.position)
                    dist_sq = dx * dx + dy * dy
                    if best is None or dist_sq < best.dist_sq or (
                        dist_sq == best.dist_sq and agent.id < best.agent.id
                    ):
                        best = Neighbor(agent, dx, dy, dist_sq)
            if best is not None:
                # Every cell in the next ring is at least ring * min_cell away.
                reach = ring * min_cell - slack
                if reach > 0 and best.dist_sq < reach * reach:
                    break
        return best

    def _max_ring(self, base_x: int, base_y: int) -> int:
        if self._wraparound:
            return (max(self._cols, self._rows) + 1) // 2
        return max(
            base_x - self._min_key[0],
            self._max_key[0] - base_x,
            base_y - self._min_key[1],
            self._max_key[1] - base_y,
            0,
        )

    @staticmethod
    def _ring_keys(base_x: int, base_y: int, ring: int) -> Iterator[Tuple[int, int]]:
        if ring == 0:
            yield (base_x, base_y)
            return
        for dx in range(-ring, ring + 1):
            yield (base_x + dx, base_y - ring)
            yield (base_x + dx, base_y + ring)
        for dy in range(-ring + 1, ring):
            yield (base_x - ring, base_y + dy)
            yield (base_x + ring, base_y + dy)

    def _keys_in_range(self, position: Vector2, range_x: int, range_y: int) -> Iterator[Tuple[int, int]]:
        base_x, base_y = self._raw_key(position)
        if self._wraparound:
            columns = self._axis_indices(base_x, range_x, self._cols)
            rows = self._axis_indices(base_y, range_y, self._rows)
        else:
            columns = range(base_x - range_x, base_x + range_x + 1)
            rows = range(base_y - range_y, base_y + range_y + 1)
        for ix in columns:
            for iy in rows:
                yield (ix, iy)

    @staticmethod
    def _axis_indices(base: int, cell_range: int, count: int) -> List[int]:
        if 2 * cell_range + 1 >= count:
            return list(range(count))
        return [(base + offset) % count for offset in range(-cell_range, cell_range + 1)]

    def _raw_key(self, position: Vector2) -> Tuple[int, int]:
        return (int(position.x // self._cell_w), int(position.y // self._cell_h))

    def _cell_key(self, position: Vector2) -> Tuple[int, int]:
        key_x, key_y = self._raw_key(position)
        if self._wraparound:
            return (key_x % self._cols, key_y % self._rows)
        return (key_x, key_y)
