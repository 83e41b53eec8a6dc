"""Tests for flap_rl.run_dir."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import jax
import pytest

from flap_rl.algorithms.dqn import DQN, DQNConfig
from flap_rl.run_dir import RunDir
from flap_rl.types import EvalResult


class TestRunDir:
    def test_creates_standard_subdirs(self, tmp_path: Path) -> None:
        run = RunDir("exp", base_dir=tmp_path)
        assert run.checkpoints.is_dir()
        assert run.logs.is_dir()
        assert run.artifacts.is_dir()

    def test_dirname_contains_experiment_name(self, tmp_path: Path) -> None:
        run = RunDir("flappy_single", base_dir=tmp_path)
        assert run.root.name.startswith("flappy_single_")

    def test_explicit_run_id(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="fixed_name")
        assert run.root == tmp_path / "fixed_name"

    def test_path_builders(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        ckpt = run.checkpoint_dir(10000)
        assert ckpt == run.checkpoints / "step_10000"
        assert ckpt.is_dir()
        assert run.log_path() == run.logs / "metrics.jsonl"
        assert run.artifact_path("final_weights.json") == run.artifacts / "final_weights.json"

    def test_fspath_and_repr(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        assert os.fspath(run) == str(run.root)
        assert "RunDir" in repr(run)


@dataclass(frozen=True)
class _Inner:
    hidden_sizes: tuple[int, ...] = (64, 64)


@dataclass(frozen=True)
class _Outer:
    name: str = "flappy"
    inner: _Inner = _Inner()


class TestConfigSnapshot:
    def test_nested_dataclasses(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        path = run.save_config(_Outer())
        assert path == run.root / "config.json"
        assert json.loads(path.read_text()) == {
            "name": "flappy", "inner": {"hidden_sizes": [64, 64]},
        }
        assert run.load_config()["inner"]["hidden_sizes"] == [64, 64]

    def test_plain_dict(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        run.save_config({"lr": 1e-3})
        assert run.load_config() == {"lr": 1e-3}


class TestCheckpointManagement:
    def test_list_sorted_numerically(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        for step in (200, 30, 1000):
            run.checkpoint_dir(step)
        (run.checkpoints / "step_bogus").mkdir()
        assert [s for s, _ in run.list_checkpoints()] == [30, 200, 1000]

    def test_mark_best(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        assert run.best_checkpoint is None
        run.checkpoint_dir(10)
        run.checkpoint_dir(20)
        run.mark_best(10)
        assert run.best_checkpoint == (run.checkpoints / "step_10").resolve()
        run.mark_best(20)
        assert run.best_checkpoint == (run.checkpoints / "step_20").resolve()

    def test_cleanup_keeps_newest_and_best(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        for step in (1, 2, 3, 4, 5):
            run.checkpoint_dir(step)
        run.mark_best(1)
        removed = run.cleanup_checkpoints(keep=2)
        assert sorted(p.name for p in removed) == ["step_2", "step_3"]
        assert [s for s, _ in run.list_checkpoints()] == [1, 4, 5]

    def test_cleanup_rejects_zero(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        with pytest.raises(ValueError):
            run.cleanup_checkpoints(keep=0)


class TestEvalCheckpoints:
    @staticmethod
    def _state(step: int):
        state = DQN.init(jax.random.PRNGKey(0), DQNConfig(hidden_sizes=(8,)))
        return state._replace(step=step)

    def test_best_follows_highest_score(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        assert run.best_score == float("-inf")

        def result(score: float) -> EvalResult:
            return EvalResult(score, score, score, (score,), 1)

        assert run.save_eval_checkpoint(self._state(10), result(2.0), total_steps=100)
        assert not run.save_eval_checkpoint(self._state(20), result(1.0), total_steps=200)
        assert run.best_checkpoint == (run.checkpoints / "step_10").resolve()
        assert run.best_score == 2.0
        assert run.save_eval_checkpoint(self._state(30), result(5.0), total_steps=300)
        assert run.best_score == 5.0

    def test_prunes_but_keeps_best(self, tmp_path: Path) -> None:
        run = RunDir(base_dir=tmp_path, run_id="r1")
        scores = [9.0, 1.0, 2.0, 3.0]
        for i, score in enumerate(scores):
            run.save_eval_checkpoint(
                self._state(i + 1), EvalResult(score, score, score, (score,), i),
                total_steps=i, keep=2,
            )
        assert [s for s, _ in run.list_checkpoints()] == [1, 3, 4]
