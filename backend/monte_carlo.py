"""
Forward-looking Monte Carlo risk simulation.

Methodology
-----------
For each of ``path_count`` paths:
    1. Draw ``horizon_days`` daily returns r_t ~ Normal(drift, volatility)
       from the scenario profile.
    2. Compound them from ``initial_capital``:
           equity_t = equity_{t-1} × (1 + r_t)
    3. Track the path's own max drawdown with the same peak/drawdown kernel
       the historical equity curve uses.

Every path owns an isolated generator seeded from ``(seed, path_index)``
through ``numpy.random.SeedSequence``, so the outcome is bit-identical for
a given seed no matter how many worker threads generate the paths or in
which order they finish.

Historical trades play no part here; the simulator is parameterised purely
by capital and scenario.
"""
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import numpy as np

from equity import drawdown_series
from errors import SimulationCancelledError, SimulationConfigError
from models import SimulationResult, SimulationScenario

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 252
DEFAULT_PATH_COUNT = 100
DEFAULT_SEED = 42

SCENARIOS: Dict[str, SimulationScenario] = {
    s.name: s
    for s in (
        SimulationScenario(
            name="bull",
            daily_drift=0.0008,
            daily_volatility=0.010,
            description="Strong upward trend",
        ),
        SimulationScenario(
            name="bear",
            daily_drift=-0.0006,
            daily_volatility=0.015,
            description="Prolonged downtrend",
        ),
        SimulationScenario(
            name="sideways",
            daily_drift=0.0001,
            daily_volatility=0.007,
            description="Range-bound market",
        ),
        SimulationScenario(
            name="high_volatility",
            daily_drift=0.0002,
            daily_volatility=0.030,
            description="Increased market swings",
        ),
        SimulationScenario(
            name="crash",
            daily_drift=-0.0030,
            daily_volatility=0.040,
            description="Severe market decline",
        ),
    )
}


def get_scenario(name: str) -> SimulationScenario:
    """Look up a built-in scenario by name (case-insensitive)."""
    key = name.strip().lower().replace(" ", "_").replace("-", "_")
    try:
        return SCENARIOS[key]
    except KeyError:
        raise SimulationConfigError(
            f"unknown scenario {name!r}; expected one of {sorted(SCENARIOS)}",
            parameter="scenario",
        ) from None


def _validate(
    scenario: SimulationScenario,
    initial_capital: float,
    horizon_days: int,
    path_count: int,
    seed: int,
) -> None:
    if not math.isfinite(initial_capital) or initial_capital <= 0:
        raise SimulationConfigError(
            f"initial_capital must be > 0, got {initial_capital}", parameter="initial_capital"
        )
    if path_count < 1:
        raise SimulationConfigError(f"path_count must be >= 1, got {path_count}", parameter="path_count")
    if horizon_days < 1:
        raise SimulationConfigError(
            f"horizon_days must be >= 1, got {horizon_days}", parameter="horizon_days"
        )
    if seed < 0:
        raise SimulationConfigError(f"seed must be >= 0, got {seed}", parameter="seed")
    if not math.isfinite(scenario.daily_drift):
        raise SimulationConfigError("daily_drift must be finite", parameter="daily_drift")
    if not math.isfinite(scenario.daily_volatility) or scenario.daily_volatility < 0:
        raise SimulationConfigError(
            f"daily_volatility must be finite and >= 0, got {scenario.daily_volatility}",
            parameter="daily_volatility",
        )


def _path_rng(seed: int, path_index: int) -> np.random.Generator:
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=(path_index,)))


def simulate_path(
    scenario: SimulationScenario,
    initial_capital: float,
    horizon_days: int,
    seed: int,
    path_index: int,
) -> np.ndarray:
    """
    Generate one equity path of ``horizon_days + 1`` points.

    Depends only on its arguments, so paths can be produced in any order or
    in parallel.
    """
    rng = _path_rng(seed, path_index)
    returns = rng.normal(scenario.daily_drift, scenario.daily_volatility, size=horizon_days)
    # A day can at worst wipe the account out.
    returns = np.maximum(returns, -1.0)
    growth = np.concatenate(([initial_capital], 1.0 + returns))
    return np.cumprod(growth)


def simulate(
    scenario: SimulationScenario,
    initial_capital: float,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    path_count: int = DEFAULT_PATH_COUNT,
    seed: int = DEFAULT_SEED,
    max_workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> SimulationResult:
    """
    Run the Monte Carlo projection and summarise the final-equity distribution.

    Args:
        scenario:        Drift / volatility profile (see SCENARIOS).
        initial_capital: Starting equity of every path; must be > 0.
        horizon_days:    Trading days per path; must be >= 1.
        path_count:      Number of independent paths; must be >= 1.
        seed:            Non-negative base seed.
        max_workers:     Threads used to generate paths; 1 runs inline.
        cancel:          Optional event checked before each path; once set the
                         call raises SimulationCancelledError and discards
                         whatever was generated.

    Returns:
        SimulationResult with summary statistics, raw paths and percentile bands.

    Raises:
        SimulationConfigError: Before any path is generated, on invalid input.
    """
    _validate(scenario, initial_capital, horizon_days, path_count, seed)

    logger.info(
        "Starting MC: scenario=%s, %d paths x %d days, initial_capital=%.0f, seed=%d",
        scenario.name,
        path_count,
        horizon_days,
        initial_capital,
        seed,
    )

    def _run(path_index: int) -> np.ndarray:
        if cancel is not None and cancel.is_set():
            raise SimulationCancelledError(f"simulation cancelled at path {path_index}")
        return simulate_path(scenario, initial_capital, horizon_days, seed, path_index)

    if max_workers > 1 and path_count > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            # map() yields in submission order, independent of completion order.
            generated: List[np.ndarray] = list(executor.map(_run, range(path_count)))
    else:
        generated = [_run(i) for i in range(path_count)]

    paths: np.ndarray = np.vstack(generated)

    # ── Final-equity distribution ─────────────────────────────────────────────────
    final_equities: np.ndarray = paths[:, -1]
    mean_final = float(np.mean(final_equities))
    p5 = float(np.percentile(final_equities, 5))
    p95 = float(np.percentile(final_equities, 95))

    # ── Per-path maximum drawdown ────────────────────────────────────────────────
    _, drawdowns = drawdown_series(paths)
    path_max_drawdowns: np.ndarray = np.max(drawdowns, axis=1)

    result = SimulationResult(
        scenario=scenario,
        initial_capital=initial_capital,
        horizon_days=horizon_days,
        path_count=path_count,
        seed=seed,
        expected_return_pct=(mean_final - initial_capital) / initial_capital * 100.0,
        max_drawdown_pct=float(np.mean(path_max_drawdowns)),
        var_95=p5,
        probability_of_loss_pct=float(np.mean(final_equities < initial_capital)) * 100.0,
        best_case=p95,
        worst_case=p5,
        best_return_pct=(p95 - initial_capital) / initial_capital * 100.0,
        worst_return_pct=(p5 - initial_capital) / initial_capital * 100.0,
        mean_final=mean_final,
        median_final=float(np.median(final_equities)),
        paths=paths.tolist(),
        # ── Percentile bands along the time axis ──
        median_path=np.percentile(paths, 50, axis=0).tolist(),
        p5_path=np.percentile(paths, 5, axis=0).tolist(),
        p25_path=np.percentile(paths, 25, axis=0).tolist(),
        p75_path=np.percentile(paths, 75, axis=0).tolist(),
        p95_path=np.percentile(paths, 95, axis=0).tolist(),
    )

    logger.info(
        "MC complete: expected_return=%.2f%%, P(loss)=%.1f%%",
        result.expected_return_pct,
        result.probability_of_loss_pct,
    )
    return result
