from __future__ import annotations

import logging
from enum import Enum
from time import perf_counter
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ...config import EngineConfig
from ..compiler.model_compiler import CompiledModel, compile_model
from ..model.types import Model, Parameter, Visualization
from ..systems import metrics as metrics_system
from ..types.metrics import TickMetrics
from ..types.snapshot import AgentSnapshot, Snapshot, SnapshotWorld
from .agent import Agent
from .environment import Environment
from .errors import CompileError, ConfigurationError
from .params import ParameterTable
from .rng import DeterministicRng, derive_stream_seed
from .scheduler import FrameScheduler, ManualScheduler

logger = logging.getLogger(__name__)

_PLACEMENT_RNG_SALT = 0x9E3779B97F4A7C15

TickCallback = Callable[[int, int], None]
SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class SimulationEngine:
    """Compiles models and drives their tick loop.

    Frames are requested from a :class:`FrameScheduler`; each runs
    ``ticks_per_frame`` ticks and then notifies listeners. Every frame carries
    the generation it was scheduled under and is dropped once ``reset``,
    ``initialize`` or ``cleanup`` has moved the generation on.
    """

    def __init__(self, config: EngineConfig | None = None, scheduler: FrameScheduler | None = None):
        self._config = config or EngineConfig()
        self._scheduler = scheduler if scheduler is not None else ManualScheduler()
        self._rng = DeterministicRng(self._config.seed)
        self._placement_rng = DeterministicRng(derive_stream_seed(self._config.seed, _PLACEMENT_RNG_SALT))
        self._compiled: CompiledModel | None = None
        self._environment: Environment | None = None
        self._series = metrics_system.ChartSeriesTracker(self._config.history_length)
        self._metrics: TickMetrics | None = None
        self._status = PlaybackStatus.IDLE
        self._tick = 0
        self._ticks_per_frame = max(1, int(self._config.ticks_per_frame))
        self._generation = 0
        self._frame_handle: Any = None
        self._on_tick: Optional[TickCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self.on_snapshot: Optional[SnapshotCallback] = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def agent_count(self) -> int:
        if self._environment is None:
            return 0
        return self._environment.agent_count

    @property
    def is_running(self) -> bool:
        return self._status is PlaybackStatus.RUNNING

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def initialized(self) -> bool:
        return self._environment is not None

    @property
    def ticks_per_frame(self) -> int:
        return self._ticks_per_frame

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    @property
    def environment(self) -> Environment | None:
        return self._environment

    @property
    def compiled(self) -> CompiledModel | None:
        return self._compiled

    def initialize(
        self,
        model: Model,
        on_tick: TickCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> bool:
        """Compile ``model`` and start over with it; returns whether it took effect."""
        if on_tick is not None:
            self._on_tick = on_tick
        if on_error is not None:
            self._on_error = on_error
        try:
            compiled = compile_model(model, self._config)
        except ConfigurationError as exc:
            logger.info("Nothing to simulate: %s", exc)
            self.cleanup()
            return False
        except CompileError as exc:
            self._report_error(exc)
            return False

        self._teardown()
        parameters = ParameterTable()
        parameters.sync(compiled.parameters)
        self._rng.reset()
        self._placement_rng.reset()
        self._compiled = compiled
        self._environment = Environment(
            compiled.width,
            compiled.height,
            compiled.wraparound,
            self._rng,
            parameters,
            cell_size=self._config.cell_size,
            max_population=self._config.max_population,
        )
        self._series.configure(compiled.visualizations)
        self._populate()
        logger.info(
            "Initialized model %r with %d agents (seed=%d)", model.name, self.agent_count, self._config.seed
        )
        return True

    def play(self) -> None:
        if self._environment is None or self._status is PlaybackStatus.RUNNING:
            return
        self._status = PlaybackStatus.RUNNING
        self._schedule_frame()

    def pause(self) -> None:
        self._cancel_frame()
        if self._status is PlaybackStatus.RUNNING:
            self._status = PlaybackStatus.PAUSED

    def step(self) -> None:
        if self._environment is None:
            return
        self._cancel_frame()
        self._status = PlaybackStatus.PAUSED
        self._advance()
        self._notify()

    def reset(self) -> None:
        if self._environment is None:
            return
        self._cancel_frame()
        self._generation += 1
        self._status = PlaybackStatus.IDLE
        self._rng.reset()
        self._placement_rng.reset()
        self._populate()

    def set_speed(self, ticks_per_frame: int) -> None:
        self._ticks_per_frame = max(1, int(ticks_per_frame))

    def cleanup(self) -> None:
        self._teardown()
        self._series.configure(())

    def update_parameter(self, name: str, value: Any) -> None:
        if self._environment is None:
            return
        self._environment.parameters.set(name, value)

    def sync_parameters(self, parameters: Iterable[Parameter]) -> None:
        if self._environment is None:
            return
        self._environment.parameters.sync(parameters)

    def update_visualizations(self, visualizations: Iterable[Visualization]) -> None:
        self._series.configure(list(visualizations))
        if self._environment is not None:
            self._series.update(self._environment, self._tick)

    def get_chart_series_value(self, viz_id: str, series_id: str) -> float:
        return self._series.value(viz_id, series_id)

    def get_chart_series_history(self, viz_id: str, series_id: str) -> List[Tuple[int, float]]:
        return self._series.history(viz_id, series_id)

    def chart_series_values(self) -> dict:
        return self._series.values()

    def snapshot(self) -> Snapshot | None:
        environment = self._environment
        compiled = self._compiled
        if environment is None or compiled is None or self._metrics is None:
            return None
        agents = [self._agent_snapshot(agent) for agent in environment.live_agents()]
        return Snapshot(
            tick=self._tick,
            status=self._status.value,
            metrics=self._metrics,
            agents=agents,
            world=SnapshotWorld(
                width=compiled.width,
                height=compiled.height,
                wraparound=compiled.wraparound,
                background_color=compiled.background_color,
            ),
            series=self._series.values(),
        )

    def _populate(self) -> None:
        environment = self._environment
        environment.clear()
        self._tick = 0
        self._compiled.setup(environment, self._placement_rng)
        environment.rebuild_index()
        self._metrics = metrics_system.create_metrics(0, 0, 0, 0.0, environment.counts_by_type())
        self._series.clear_history()
        self._series.update(environment, 0)
        self._notify()

    def _advance(self) -> None:
        environment = self._environment
        start = perf_counter()
        for agent in environment.agents:
            if not agent.alive or agent.tick_fn is None:
                continue
            try:
                agent.tick_fn(agent, environment)
            except Exception:
                logger.warning(
                    "Agent %d (%s) failed during tick %d", agent.id, agent.type_id, self._tick + 1, exc_info=True
                )
        born, deaths = environment.finish_tick()
        for child in born:
            self._compiled.apply_visual(child)
        environment.rebuild_index()
        self._tick += 1
        elapsed_ms = (perf_counter() - start) * 1000.0
        self._metrics = metrics_system.create_metrics(
            self._tick, len(born), deaths, elapsed_ms, environment.counts_by_type()
        )
        self._series.update(environment, self._tick)

    def _run_frame(self, generation: int) -> None:
        self._frame_handle = None
        if generation != self._generation or self._status is not PlaybackStatus.RUNNING:
            return
        if self._environment is None:
            return
        for _ in range(self._ticks_per_frame):
            self._advance()
        self._notify()
        if generation == self._generation and self._status is PlaybackStatus.RUNNING:
            self._schedule_frame()

    def _schedule_frame(self) -> None:
        generation = self._generation
        self._frame_handle = self._scheduler.request_frame(lambda: self._run_frame(generation))

    def _cancel_frame(self) -> None:
        if self._frame_handle is not None:
            self._scheduler.cancel(self._frame_handle)
            self._frame_handle = None

    def _teardown(self) -> None:
        self._cancel_frame()
        self._generation += 1
        self._status = PlaybackStatus.IDLE
        self._environment = None
        self._compiled = None
        self._metrics = None
        self._tick = 0

    def _notify(self) -> None:
        if self._on_tick is not None:
            self._on_tick(self._tick, self.agent_count)
        if self.on_snapshot is not None:
            snapshot = self.snapshot()
            if snapshot is not None:
                self.on_snapshot(snapshot)

    def _report_error(self, error: Exception) -> None:
        if self._on_error is not None:
            self._on_error(error)
        else:
            logger.error("Model failed to compile: %s", error)

    def _agent_snapshot(self, agent: Agent) -> AgentSnapshot:
        visual = agent.visual or self._compiled.visual(agent.type_id)
        return AgentSnapshot(
            id=agent.id,
            type_id=agent.type_id,
            x=agent.position.x,
            y=agent.position.y,
            heading=agent.heading,
            color=visual.color if visual else "#ffffff",
            shape=visual.shape if visual else "circle",
            size=visual.size if visual else 5.0,
            properties=agent.properties.as_dict(),
        )
