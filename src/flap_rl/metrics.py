"""Training statistics, structured JSONL metrics, and console logging.

Three pieces:

* :class:`EpisodeStats` / :class:`ThroughputMeter` - the rolling
  bookkeeping a trainer needs to build a ``MetricsSnapshot``.
* :class:`MetricsLogger` - one JSON object per line in
  ``logs/metrics.jsonl`` inside a :class:`~flap_rl.run_dir.RunDir`.
* :func:`setup_logging` / :func:`log_snapshot` - compact console output
  on the ``flap_rl`` logger.

Usage::

    from flap_rl.run_dir import RunDir
    from flap_rl.metrics import MetricsLogger

    run = RunDir("flappy_dqn")
    logger = MetricsLogger(run.log_path())
    logger.write({"episode": 120, "loss": 0.42, "avg_reward": 3.5})
    logger.close()
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from pathlib import Path
from typing import IO, Any

import jax.numpy as jnp
import numpy as np

from flap_rl.types import EvalResult, MetricsSnapshot

# ---------------------------------------------------------------------------
# Rolling statistics
# ---------------------------------------------------------------------------


class EpisodeStats:
    """Moving averages over the last ``window`` completed episodes.

    Parameters
    ----------
    window:
        Number of recent episodes averaged.
    """

    def __init__(self, window: int = 100) -> None:
        self.window = window
        self._rewards: deque[float] = deque(maxlen=window)
        self._lengths: deque[int] = deque(maxlen=window)
        self.episodes = 0
        self.last_reward = 0.0
        self.last_length = 0

    def record(self, reward: float, length: int) -> None:
        self.episodes += 1
        self.last_reward = float(reward)
        self.last_length = int(length)
        self._rewards.append(self.last_reward)
        self._lengths.append(self.last_length)

    @property
    def avg_reward(self) -> float:
        return float(np.mean(self._rewards)) if self._rewards else 0.0

    @property
    def avg_length(self) -> float:
        return float(np.mean(self._lengths)) if self._lengths else 0.0

    def reset(self, episodes: int = 0) -> None:
        self._rewards.clear()
        self._lengths.clear()
        self.episodes = episodes
        self.last_reward = 0.0
        self.last_length = 0


class ThroughputMeter:
    """Steps per second between consecutive :meth:`rate` calls."""

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._last_time = clock()
        self._last_steps = 0

    def rate(self, total_steps: int) -> float:
        now = self._clock()
        elapsed = now - self._last_time
        steps = total_steps - self._last_steps
        self._last_time = now
        self._last_steps = total_steps
        if elapsed <= 0:
            return 0.0
        return steps / elapsed

    def reset(self, total_steps: int = 0) -> None:
        self._last_time = self._clock()
        self._last_steps = total_steps


# ---------------------------------------------------------------------------
# Structured console logging
# ---------------------------------------------------------------------------

_LEVEL_ABBREV = {
    logging.DEBUG: "D",
    logging.INFO: "I",
    logging.WARNING: "W",
    logging.ERROR: "E",
    logging.CRITICAL: "C",
}


class _TrainFormatter(logging.Formatter):
    """Compact formatter: abbreviated level + millisecond timestamp.

    Example output::

        I 2026-02-15 14:30:22.123 [flap_rl.session.worker] Training started
    """

    def format(self, record: logging.LogRecord) -> str:
        lvl = _LEVEL_ABBREV.get(record.levelno, "?")
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        ms = int(record.msecs)
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return f"{lvl} {ts}.{ms:03d} [{record.name}] {msg}"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the ``flap_rl`` logger with compact formatting.

    Installs a :class:`~logging.StreamHandler` on the ``"flap_rl"``
    logger with abbreviated level names (D/I/W/E/C) and millisecond
    timestamps.  Safe to call multiple times: existing handlers are
    replaced.
    """
    logger = logging.getLogger("flap_rl")
    logger.setLevel(level)

    for h in logger.handlers[:]:
        logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(_TrainFormatter())
    logger.addHandler(handler)
    logger.propagate = False


def log_snapshot(
    snapshot: MetricsSnapshot,
    logger_name: str = "flap_rl",
) -> None:
    """Log a one-line summary of a metrics snapshot.

    Example output::

        I 2026-02-15 14:30:22.123 [flap_rl] ep 1200 | steps 250000 (8400/s) | avg_reward=3.21 eps=0.312 loss=0.0123
    """
    phase = "warmup" if snapshot.is_warmup else "train"
    parts = [
        f"ep {snapshot.episode}",
        f"steps {snapshot.total_steps} ({snapshot.steps_per_second:.0f}/s)",
        f"{phase} buffer={snapshot.buffer_size}",
        (
            f"avg_reward={snapshot.avg_reward:.4g} eps={snapshot.epsilon:.3f} "
            f"loss={snapshot.loss:.4g} lr={snapshot.learning_rate:.2e}"
        ),
    ]
    if snapshot.is_eval:
        parts.append(f"eval {snapshot.eval_trial}/{snapshot.eval_trials}")
    logging.getLogger(logger_name).info(" | ".join(parts))


# ---------------------------------------------------------------------------
# Core MetricsLogger
# ---------------------------------------------------------------------------


class MetricsLogger:
    """Append-only JSONL logger.

    Parameters
    ----------
    path:
        Path to the JSONL file.  Parent directories are created
        automatically.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file: IO[str] = open(self._path, "a")  # noqa: SIM115
        self._start_time = time.monotonic()

    def write(self, record: dict[str, Any]) -> None:
        """Write a single metrics record as one JSON line.

        Automatically adds ``wall_time`` (seconds since logger creation)
        if not already present.  JAX/numpy scalars are converted to
        Python values.
        """
        row = {k: _to_python(v) for k, v in record.items()}
        if "wall_time" not in row:
            row["wall_time"] = round(time.monotonic() - self._start_time, 3)
        self._file.write(json.dumps(row, default=str) + "\n")
        self._file.flush()

    def write_snapshot(self, snapshot: MetricsSnapshot) -> None:
        self.write({"kind": "metrics", **snapshot._asdict()})

    def write_eval(self, result: EvalResult) -> None:
        record = result._asdict()
        record["scores"] = list(result.scores)
        self.write({"kind": "eval", **record})

    def close(self) -> None:
        self._file.close()

    @property
    def path(self) -> Path:
        return self._path

    def __enter__(self) -> MetricsLogger:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"MetricsLogger({self._path})"


def read_metrics(path: str | Path) -> list[dict[str, Any]]:
    """Read all records from a JSONL metrics file."""
    p = Path(path)
    if not p.exists():
        return []
    records = []
    for line in p.read_text().splitlines():
        line = line.strip()
        if line:
            records.append(json.loads(line))
    return records


def _to_python(val: Any) -> Any:
    """Convert JAX/numpy scalars to plain Python types for JSON."""
    if isinstance(val, (jnp.ndarray, np.ndarray)):
        return val.item() if val.size == 1 else val.tolist()
    if isinstance(val, (np.integer, np.floating, np.bool_)):
        return val.item()
    return val
