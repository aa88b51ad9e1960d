from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from ..logging_config import configure_logging
from ..sim.core.engine import SimulationEngine
from ..sim.core.errors import ConfigurationError, SimulationError
from ..sim.core.scheduler import ManualScheduler
from ..sim.model.loader import load_model
from ..sim.model.templates import TEMPLATES, create_from_template
from ..sim.model.types import Model
from ..sim.types.metrics import TickMetrics

logger = logging.getLogger(__name__)

_BASE_HEADER = ["tick", "population", "births", "deaths", "tick_ms"]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    if low == high:
        return float(sorted_values[low])
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p90": 0.0, "p99": 0.0}
    sorted_values = sorted(values)
    return {
        "min": float(sorted_values[0]),
        "max": float(sorted_values[-1]),
        "avg": float(sum(values) / len(values)),
        "p50": _percentile(sorted_values, 0.50),
        "p90": _percentile(sorted_values, 0.90),
        "p99": _percentile(sorted_values, 0.99),
    }


def _series_columns(model: Model) -> List[tuple[str, str, str]]:
    columns = []
    for visualization in model.visualizations:
        if not visualization.enabled or visualization.type != "line-chart":
            continue
        for series in visualization.series:
            columns.append((f"series:{visualization.name}/{series.name or series.id}", visualization.id, series.id))
    return columns


def _format_row(
    engine: SimulationEngine,
    metrics: TickMetrics,
    tick_ms: float,
    type_ids: List[str],
    series_columns: List[tuple[str, str, str]],
) -> list[object]:
    row: list[object] = [metrics.tick, metrics.population, metrics.births, metrics.deaths, f"{tick_ms:.3f}"]
    row.extend(metrics.counts_by_type.get(type_id, 0) for type_id in type_ids)
    row.extend(f"{engine.get_chart_series_value(viz_id, series_id):.4f}" for _, viz_id, series_id in series_columns)
    return row


def run_headless(
    steps: int,
    seed: Optional[int] = None,
    log_path: Optional[Path] = None,
    deterministic_log: bool = False,
    summary_path: Optional[Path] = None,
    model_path: Optional[Path] = None,
    template: str = "predator-prey",
    ticks_per_frame: Optional[int] = None,
    config: EngineConfig | None = None,
) -> Dict[str, Any]:
    """Run a model without a UI and return the run summary.

    Frames are pumped through a :class:`ManualScheduler`; one CSV row is
    written per frame. The run stops early once every agent is gone.
    """
    config = replace(config) if config is not None else EngineConfig()
    if seed is not None:
        config.seed = seed
    if ticks_per_frame is not None:
        config.ticks_per_frame = max(1, int(ticks_per_frame))

    model = load_model(model_path) if model_path else create_from_template(template)
    scheduler = ManualScheduler()
    engine = SimulationEngine(config, scheduler)
    errors: List[Exception] = []
    if not engine.initialize(model, on_error=errors.append):
        if errors:
            raise errors[0]
        raise ConfigurationError(f"model {model.name!r} has nothing to simulate")

    type_ids = [agent_type.id for agent_type in model.agent_types]
    series_columns = _series_columns(model)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(
            _BASE_HEADER
            + [f"count:{agent_type.name or agent_type.id}" for agent_type in model.agent_types]
            + [column for column, _, _ in series_columns]
        )

    tick_ms_series: list[float] = []
    population_series: list[int] = []
    peak_population = (engine.agent_count, 0)

    try:
        engine.play()
        while engine.tick < steps and engine.agent_count > 0:
            engine.set_speed(min(config.ticks_per_frame, steps - engine.tick))
            if scheduler.run_pending() == 0:
                break
            metrics = engine.metrics
            tick_ms = 0.0 if deterministic_log else metrics.tick_duration_ms
            tick_ms_series.append(tick_ms)
            population_series.append(metrics.population)
            if metrics.population > peak_population[0]:
                peak_population = (metrics.population, metrics.tick)
            if writer:
                writer.writerow(_format_row(engine, metrics, tick_ms, type_ids, series_columns))
        engine.pause()
    finally:
        if csv_file:
            csv_file.close()

    final = engine.metrics
    names = {agent_type.id: agent_type.name or agent_type.id for agent_type in model.agent_types}
    summary = {
        "model": model.name,
        "steps": steps,
        "ticks_run": engine.tick,
        "seed": config.seed,
        "ticks_per_frame": config.ticks_per_frame,
        "deterministic_log": deterministic_log,
        "stopped_early": engine.tick < steps,
        "final_population": final.population,
        "final_counts": {names[type_id]: final.counts_by_type.get(type_id, 0) for type_id in type_ids},
        "peak_population": {"value": peak_population[0], "tick": peak_population[1]},
        "tick_ms": _summary_stats(tick_ms_series),
        "population": _summary_stats([float(v) for v in population_series]),
    }
    if summary["stopped_early"]:
        logger.info("Population reached zero at tick %d", engine.tick)
    engine.cleanup()
    if summary_path:
        Path(summary_path).write_text(json.dumps(summary, indent=2))
    return summary


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Headless agent-based model runner")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--model", type=Path, default=None, help="Model file (.json, .yaml or .yml)")
    source.add_argument(
        "--template",
        choices=[template.id for template in TEMPLATES],
        default="predator-prey",
        help="Built-in template to run when --model is not given.",
    )
    parser.add_argument("--steps", type=int, default=1000)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--ticks-per-frame", type=int, default=None, help="Ticks per frame (one CSV row per frame).")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write metrics")
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Optional JSON file to write summary stats for the run.",
    )
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (tick_ms is forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--config", type=Path, default=None, help="Engine config YAML file")
    args = parser.parse_args(argv)

    configure_logging(include_uvicorn=False)
    config = EngineConfig.from_yaml(args.config) if args.config else None
    try:
        summary = run_headless(
            args.steps,
            args.seed,
            args.log,
            deterministic_log=args.deterministic_log,
            summary_path=args.summary,
            model_path=args.model,
            template=args.template,
            ticks_per_frame=args.ticks_per_frame,
            config=config,
        )
    except SimulationError as exc:
        parser.exit(2, f"error: {exc}\n")
    logger.info("Ran %d ticks; final population %d", summary["ticks_run"], summary["final_population"])


if __name__ == "__main__":
    main()
