"""Output directory for one training run.

``RunDir`` creates the directory tree a training script writes into and
keeps the checkpoint set tidy as evaluations come in::

    runs/
    └── flappy_batched_20260215_143022/
        ├── config.json
        ├── checkpoints/
        │   ├── step_100000/
        │   ├── step_200000/
        │   └── best -> step_200000
        ├── logs/
        │   └── metrics.jsonl
        └── artifacts/
            └── final_weights.json

Usage::

    run = RunDir("flappy_batched", base_dir="runs")
    run.save_config(config)
    run.save_eval_checkpoint(trainer_state.agent, eval_result, total_steps=n)
"""

from __future__ import annotations

import dataclasses
import json
import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from flap_rl.algorithms.dqn.types import DQNState
from flap_rl.checkpoint import load_metadata, save_checkpoint
from flap_rl.types import EvalResult

logger = logging.getLogger(__name__)

_SUBDIRS = ("checkpoints", "logs", "artifacts")


class RunDir:
    """Handle on ``<base_dir>/<experiment>_<utc timestamp>/``.

    Parameters
    ----------
    experiment_name:
        Prefix of the generated directory name (e.g. ``"flappy_single"``).
    base_dir:
        Parent of all runs.
    run_id:
        Use this directory name verbatim instead of generating one, e.g.
        to write into an existing run.
    """

    def __init__(
        self,
        experiment_name: str = "default",
        base_dir: str | Path = "runs",
        *,
        run_id: str | None = None,
    ) -> None:
        if run_id is None:
            run_id = f"{experiment_name}_{datetime.now(tz=UTC):%Y%m%d_%H%M%S}"
        self._root = Path(base_dir) / run_id
        for name in _SUBDIRS:
            (self._root / name).mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def checkpoints(self) -> Path:
        return self._root / "checkpoints"

    @property
    def logs(self) -> Path:
        return self._root / "logs"

    @property
    def artifacts(self) -> Path:
        return self._root / "artifacts"

    def checkpoint_dir(self, step: int) -> Path:
        """``checkpoints/step_{step}/``, created on first use."""
        p = self.checkpoints / f"step_{step}"
        p.mkdir(parents=True, exist_ok=True)
        return p

    def log_path(self, filename: str = "metrics.jsonl") -> Path:
        return self.logs / filename

    def artifact_path(self, filename: str) -> Path:
        return self.artifacts / filename

    # ------------------------------------------------------------------
    # Config snapshot
    # ------------------------------------------------------------------

    def save_config(self, config: Any, filename: str = "config.json") -> Path:
        """Write *config* (nested frozen dataclasses or dicts) as JSON."""
        path = self._root / filename
        path.write_text(json.dumps(_to_jsonable(config), indent=2, default=str) + "\n")
        return path

    def load_config(self, filename: str = "config.json") -> dict[str, Any]:
        return json.loads((self._root / filename).read_text())

    # ------------------------------------------------------------------
    # Checkpoint set
    # ------------------------------------------------------------------

    def list_checkpoints(self) -> list[tuple[int, Path]]:
        """``(train_step, path)`` for every ``step_*`` directory, oldest first."""
        found = []
        for entry in self.checkpoints.glob("step_*"):
            suffix = entry.name.removeprefix("step_")
            if entry.is_dir() and suffix.isdigit():
                found.append((int(suffix), entry))
        return sorted(found)

    def mark_best(self, step: int) -> Path:
        """Repoint ``checkpoints/best`` at ``step_{step}/``.

        The new link is created under a temporary name and renamed over
        the old one so readers never see it missing.
        """
        link = self.checkpoints / "best"
        staging = self.checkpoints / "best.tmp"
        staging.unlink(missing_ok=True)
        staging.symlink_to(f"step_{step}")
        staging.rename(link)
        return link

    @property
    def best_checkpoint(self) -> Path | None:
        link = self.checkpoints / "best"
        return link.resolve() if link.is_symlink() else None

    @property
    def best_score(self) -> float:
        """``avg_score`` recorded with the best checkpoint (``-inf`` if none)."""
        best = self.best_checkpoint
        if best is None:
            return float("-inf")
        return float(load_metadata(best).get("avg_score", float("-inf")))

    def cleanup_checkpoints(self, keep: int = 3) -> list[Path]:
        """Remove all but the *keep* newest step directories.

        The ``best`` target is never removed.  Returns the removed paths.
        """
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")
        ordered = self.list_checkpoints()
        survivors = {p.resolve() for _, p in ordered[-keep:]}
        if self.best_checkpoint is not None:
            survivors.add(self.best_checkpoint)

        removed = []
        for _, p in ordered:
            if p.resolve() not in survivors:
                shutil.rmtree(p)
                removed.append(p)
        return removed

    def save_eval_checkpoint(
        self,
        state: DQNState,
        result: EvalResult,
        *,
        total_steps: int,
        keep: int = 3,
    ) -> bool:
        """Checkpoint *state* after an evaluation round.

        ``best`` follows the highest average evaluation score, then older
        checkpoints are pruned.  Returns True if this one became the best.
        """
        step = int(state.step)
        save_checkpoint(
            self.checkpoint_dir(step),
            state,
            episode=result.episode,
            total_steps=total_steps,
            avg_score=result.avg_score,
        )
        improved = result.avg_score > self.best_score
        if improved:
            self.mark_best(step)
            logger.info("New best evaluation %.2f at train step %d", result.avg_score, step)
        self.cleanup_checkpoints(keep)
        return improved

    def __repr__(self) -> str:
        return f"RunDir({self._root})"

    def __fspath__(self) -> str:
        return str(self._root)


def _to_jsonable(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        obj = {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {k: _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    return obj
