"""Headless Flappy-Bird environment.

Physics follow the classic FlapPyBird constants at 30 FPS: gravity 1
px/frame^2, flap velocity -9, terminal velocity 10, pipes moving left at
5 px/frame with a 120 px gap.  Nothing is rendered.

Observation (6 features, roughly in ``[-1, 1]``)::

    [bird_y, bird_vel, dx1, dy1, dx2, dy2]

``dx``/``dy`` are horizontal distance to the next two pipes and vertical
offset from the bird to each gap centre.

Reward (see :class:`RewardConfig`): a step penalty every frame,
``pass_pipe`` per pipe cleared, ``flap_cost`` for flapping, a small
shaping bonus for being level with the next gap, 0.1 penalty while above
the viewport, and ``death_penalty`` (replacing everything else) on the
terminal frame.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

import numpy as np

from flap_rl.env.base import Environment, StepResult
from flap_rl.env.spaces import Box, Discrete

OBS_DIM = 6
OUT_OF_BOUNDS_PENALTY = 0.1


@dataclass(frozen=True)
class FlappyParams:
    """Static game geometry and physics (pixels, frames)."""

    width: float = 288.0
    viewport_height: float = 400.0

    bird_x: float = 57.0
    bird_initial_y: float = 244.0
    bird_width: float = 34.0
    bird_height: float = 24.0
    flap_velocity: float = -9.0
    gravity: float = 1.0
    max_velocity_down: float = 10.0
    bird_min_y: float = -48.0

    pipe_width: float = 52.0
    pipe_gap: float = 120.0
    pipe_velocity: float = -5.0
    pipe_spawn_distance: float = 182.0
    pipe_initial_x: float = 468.0


@dataclass(frozen=True)
class RewardConfig:
    """Reward shaping knobs, adjustable while training."""

    step_penalty: float = -0.01
    pass_pipe: float = 1.0
    death_penalty: float = -1.0
    flap_cost: float = 0.003
    center_reward: float = 0.01


@dataclass
class _Pipe:
    x: float
    gap_center_y: float
    passed: bool = False


@dataclass
class _GameState:
    bird_y: float
    bird_vel: float
    pipes: list[_Pipe] = field(default_factory=list)
    score: int = 0
    frame: int = 0
    done: bool = False


class FlappyBird(Environment):
    """Flappy-Bird avoidance task.

    Actions: ``0`` (idle) or ``1`` (flap).  An episode ends when the bird
    hits a pipe or the ground; flying above the screen is allowed but
    penalised.

    Args:
        reward_config: Initial reward shaping.
        params: Game geometry / physics.
        seed: Seed for pipe gap placement.
    """

    def __init__(
        self,
        reward_config: RewardConfig | None = None,
        params: FlappyParams | None = None,
        *,
        seed: int | None = None,
    ) -> None:
        self.params = params or FlappyParams()
        self.reward_config = reward_config or RewardConfig()
        self._rng = np.random.default_rng(seed)
        self.episode = 0
        self.total_steps = 0
        self._state = _GameState(bird_y=self.params.bird_initial_y, bird_vel=0.0, done=True)

    # ------------------------------------------------------------------
    # Environment API
    # ------------------------------------------------------------------

    def reset(self) -> np.ndarray:
        p = self.params
        first = self._random_pipe(p.pipe_initial_x)
        second = self._random_pipe(first.x + p.pipe_spawn_distance)
        self._state = _GameState(
            bird_y=p.bird_initial_y,
            bird_vel=p.flap_velocity,
            pipes=[first, second],
        )
        self.episode += 1
        return self.observation()

    def step(self, action: int) -> StepResult:
        s = self._state
        if s.done:
            return StepResult(self.observation(), 0.0, True, self._info())

        prev_score = s.score
        if action == 1 and s.bird_y > self.params.bird_min_y:
            s.bird_vel = self.params.flap_velocity
        self._move_bird()
        self._move_pipes()
        self._check_collisions()
        self._update_score()

        reward = self._reward(action, s.score - prev_score)
        s.frame += 1
        self.total_steps += 1
        return StepResult(self.observation(), reward, s.done, self._info())

    def observation(self) -> np.ndarray:
        p = self.params
        s = self._state
        ahead = [pipe for pipe in s.pipes if pipe.x + p.pipe_width > p.bird_x]
        features = [
            s.bird_y / p.viewport_height,
            s.bird_vel / p.max_velocity_down,
        ]
        for i in range(2):
            if i < len(ahead):
                pipe = ahead[i]
                dx = (pipe.x + p.pipe_width - p.bird_x) / p.width
                dy = (pipe.gap_center_y - s.bird_y) / p.viewport_height
            else:
                dx, dy = 1.0, 0.0
            features.extend([dx, dy])
        return np.clip(np.array(features, dtype=np.float32), -2.0, 2.0)

    def observation_space(self) -> Box:
        return Box(low=-2.0, high=2.0, shape=(OBS_DIM,))

    def action_space(self) -> Discrete:
        return Discrete(2)

    def set_reward_config(self, **partial: float) -> None:
        unknown = set(partial) - {f.name for f in dataclasses.fields(RewardConfig)}
        if unknown:
            raise ValueError(f"unknown reward settings: {sorted(unknown)}")
        self.reward_config = dataclasses.replace(self.reward_config, **partial)

    @property
    def score(self) -> int:
        return self._state.score

    @property
    def done(self) -> bool:
        return self._state.done

    # ------------------------------------------------------------------
    # Game mechanics
    # ------------------------------------------------------------------

    def _move_bird(self) -> None:
        p = self.params
        s = self._state
        if s.bird_vel < p.max_velocity_down:
            s.bird_vel += p.gravity
        floor_y = p.viewport_height - p.bird_height * 0.75
        s.bird_y = min(max(s.bird_y + s.bird_vel, p.bird_min_y), floor_y)

    def _move_pipes(self) -> None:
        p = self.params
        s = self._state
        for pipe in s.pipes:
            pipe.x += p.pipe_velocity
        s.pipes = [pipe for pipe in s.pipes if pipe.x > -p.pipe_width]
        if not s.pipes:
            s.pipes.append(self._random_pipe(p.width + 10))
            return
        last = s.pipes[-1]
        if p.width - (last.x + p.pipe_width) > p.pipe_width * 2.5:
            s.pipes.append(self._random_pipe(p.width + 10))

    def _check_collisions(self) -> None:
        p = self.params
        s = self._state
        if s.bird_y + p.bird_height >= p.viewport_height:
            s.done = True
            return
        for pipe in s.pipes:
            if p.bird_x + p.bird_width > pipe.x and p.bird_x < pipe.x + p.pipe_width:
                gap_top = pipe.gap_center_y - p.pipe_gap / 2
                gap_bottom = pipe.gap_center_y + p.pipe_gap / 2
                if s.bird_y < gap_top or s.bird_y + p.bird_height > gap_bottom:
                    s.done = True
                    return

    def _update_score(self) -> None:
        p = self.params
        bird_center = p.bird_x + p.bird_width / 2
        for pipe in self._state.pipes:
            if pipe.passed:
                continue
            pipe_center = pipe.x + p.pipe_width / 2
            if pipe_center <= bird_center < pipe_center - p.pipe_velocity:
                pipe.passed = True
                self._state.score += 1

    def _reward(self, action: int, score_delta: int) -> float:
        cfg = self.reward_config
        s = self._state
        if s.done:
            return float(cfg.death_penalty)

        reward = score_delta * cfg.pass_pipe + cfg.step_penalty
        if action == 1 and cfg.flap_cost > 0:
            reward -= cfg.flap_cost
        if s.bird_y < 0:
            reward -= OUT_OF_BOUNDS_PENALTY
        if cfg.center_reward > 0 and s.pipes:
            distance = abs(s.pipes[0].gap_center_y - s.bird_y)
            proximity = max(0.0, 1.0 - distance / (self.params.viewport_height / 2))
            reward += cfg.center_reward * proximity
        return float(reward)

    def _random_pipe(self, x: float) -> _Pipe:
        p = self.params
        lo = p.viewport_height * 0.2 + p.pipe_gap / 2
        hi = p.viewport_height * 0.8 - p.pipe_gap / 2
        return _Pipe(x=x, gap_center_y=float(self._rng.uniform(lo, hi)))

    def _info(self) -> dict[str, int]:
        return {"score": self._state.score, "episode": self.episode, "steps": self.total_steps}
