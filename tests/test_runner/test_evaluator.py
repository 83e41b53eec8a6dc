"""Tests for greedy evaluation."""

import jax
import pytest

from flap_rl.algorithms.dqn import ValueNetwork
from flap_rl.env import FlappyBird
from flap_rl.runner import Evaluator, eval_pool_size, evaluate, should_evaluate
from flap_rl.types import EvalResult


@pytest.fixture
def params() -> ValueNetwork:
    return ValueNetwork(6, 2, (8,), key=jax.random.key(0))


class TestEvaluate:
    def test_runs_all_trials(self, params, env_fn):
        result = evaluate(params, env_fn, trials=5, num_envs=2, max_steps=200, episode=42)
        assert isinstance(result, EvalResult)
        assert len(result.scores) == 5
        assert result.min_score <= result.avg_score <= result.max_score
        assert result.episode == 42

    def test_max_steps_cuts_trials_off(self, params, env_fn):
        result = evaluate(params, env_fn, trials=3, num_envs=3, max_steps=3)
        assert result.scores == (0.0, 0.0, 0.0)

    def test_does_not_touch_training_envs(self, params):
        created = []

        def env_fn(i):
            env = FlappyBird(seed=i)
            created.append(env)
            return env

        evaluate(params, env_fn, trials=2, num_envs=16, max_steps=20)
        assert len(created) == 2  # pool capped at the trial count

    def test_pool_capped_by_training_envs(self, params):
        created = []

        def env_fn(i):
            env = FlappyBird(seed=i)
            created.append(env)
            return env

        result = evaluate(params, env_fn, trials=6, num_envs=16, training_envs=3, max_steps=20)
        assert len(created) == 3
        assert len(result.scores) == 6


class TestEvaluator:
    def test_slices_until_done(self, params, env_fn):
        evaluator = Evaluator(env_fn, trials=4, num_envs=2, max_steps=100)
        result = None
        while result is None:
            result = evaluator.run_slice(params, budget_ms=1.0)
        assert evaluator.done
        assert evaluator.completed == 4

    def test_finish_without_scores(self, params, env_fn):
        evaluator = Evaluator(env_fn, trials=4, num_envs=2)
        assert evaluator.finish() is None

    def test_finish_early_uses_collected_scores(self, params, env_fn):
        evaluator = Evaluator(env_fn, trials=50, num_envs=2, max_steps=5)
        while evaluator.completed == 0:
            evaluator.run_slice(params, budget_ms=1.0)
        result = evaluator.finish()
        assert result is not None
        assert len(result.scores) == evaluator.completed < 50

    def test_rejects_zero_trials(self, env_fn):
        with pytest.raises(ValueError):
            Evaluator(env_fn, trials=0)


class TestEvalPoolSize:
    @pytest.mark.parametrize("num_envs, trials, training_envs, expected", [
        (16, 100, None, 16),
        (16, 100, 4, 4),
        (16, 5, 64, 5),
        (16, 100, 1, 1),
        (0, 100, 8, 1),
    ])
    def test_smallest_bound_wins(self, num_envs, trials, training_envs, expected):
        assert eval_pool_size(num_envs, trials, training_envs) == expected


class TestShouldEvaluate:
    BASE = dict(
        enabled=True, is_warmup=False, episode=10, last_eval_episode=0, interval=10, running=False,
    )

    def test_fires(self):
        assert should_evaluate(**self.BASE)

    @pytest.mark.parametrize("override", [
        {"enabled": False},
        {"is_warmup": True},
        {"running": True},
        {"episode": 9},
        {"last_eval_episode": 5},
    ])
    def test_blocked(self, override):
        assert not should_evaluate(**{**self.BASE, **override})
