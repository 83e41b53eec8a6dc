#!/usr/bin/env python3
"""Training script with preset selection.

Select a preset configuration and optionally override any field::

    python scripts/train.py flappy_single
    python scripts/train.py flappy_single --dqn.lr 5e-4
    python scripts/train.py flappy_batched --runner.num_envs 1024
    python scripts/train.py flappy_single --help

Runs with ``runner.num_envs > 1`` use the batched trainer.  Metrics go to
``runs/<experiment>_<timestamp>/logs/metrics.jsonl``; a checkpoint is
saved after every evaluation and the best one is marked.
"""

from __future__ import annotations

import logging

from flap_rl.checkpoint import save_weights
from flap_rl.configs import TrainConfig, cli
from flap_rl.env import make
from flap_rl.metrics import MetricsLogger, log_snapshot, setup_logging
from flap_rl.run_dir import RunDir
from flap_rl.runner import TrainerState, train_dqn, train_dqn_batched
from flap_rl.seeding import derive_seed
from flap_rl.types import EvalResult, MetricsSnapshot

logger = logging.getLogger("flap_rl.train")


def main(config: TrainConfig) -> None:
    setup_logging()
    run_dir = RunDir(config.experiment)
    run_dir.save_config(config)
    logger.info("Run directory: %s", run_dir.root)

    seed = config.runner.seed

    def env_fn(index: int):
        return make(config.env_id, seed=derive_seed(seed, "env", index))

    with MetricsLogger(run_dir.log_path()) as metrics:

        def on_metrics(snapshot: MetricsSnapshot) -> None:
            metrics.write_snapshot(snapshot)
            log_snapshot(snapshot)

        def on_eval(result: EvalResult, ts: TrainerState) -> None:
            metrics.write_eval(result)
            run_dir.save_eval_checkpoint(ts.agent, result, total_steps=ts.total_steps)

        trainer = train_dqn_batched if config.runner.num_envs > 1 else train_dqn
        result = trainer(
            env_fn,
            dqn_config=config.dqn,
            runner_config=config.runner,
            total_steps=config.total_steps,
            callback=on_metrics,
            eval_callback=on_eval,
        )

    ts = result.trainer_state
    save_weights(
        run_dir.artifact_path("final_weights.json"),
        ts.agent.params,
        episode=ts.stats.episodes,
        total_steps=ts.total_steps,
    )

    returns = result.episode_returns[-10:]
    mean_return = sum(returns) / len(returns) if returns else 0.0
    logger.info(
        "Training complete | episodes=%d | mean_return(last 10)=%.2f | evaluations=%d",
        len(result.episode_returns), mean_return, len(result.eval_results),
    )
    logger.info("Metrics: %s", run_dir.log_path())


if __name__ == "__main__":
    main(cli())
