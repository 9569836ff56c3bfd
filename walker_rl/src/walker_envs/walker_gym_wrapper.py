from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Tuple

import gymnasium as gym
import mujoco
import numpy as np
from gymnasium import spaces

from walker_rl.src.walker_envs.loader import load_walker_env, resolve_cfg
from walker_rl.src.walker_envs.walker_env import WalkerEnv


class WalkerGymEnv(gym.Env):
    """
    WalkerEnv -> Gymnasium wrapper.

    - Actions are clipped to [-clip_actions, clip_actions] before the env scales
      them around the standing pose.
    - terminated: a non-foot body touched something; the step reward is then the
      terminal reward, as in the vectorized PPO training loop.
    - truncated: max_episode_steps control steps without termination.
    """

    metadata = {"render_modes": ["rgb_array"]}

    def __init__(self, env: WalkerEnv, *, max_episode_steps: Optional[int] = None,
                 clip_actions: Optional[float] = None, render_mode: Optional[str] = None) -> None:
        if render_mode is not None and render_mode not in self.metadata["render_modes"]:
            raise ValueError(f"Unsupported render mode: {render_mode!r}")
        self.render_mode = render_mode
        self.env = env
        h, w = env.cfg["video_size"]
        self.render_size = (int(h), int(w))
        self.max_episode_steps = int(max_episode_steps if max_episode_steps is not None
                                     else env.cfg["max_episode_steps"])
        clip = float(clip_actions if clip_actions is not None else env.cfg["clip_actions"])

        # ---------- Spaces ----------
        self.action_space = spaces.Box(low=-clip, high=clip, shape=(env.get_action_dim(),), dtype=np.float32)
        self.observation_space = spaces.Box(
            low=-np.inf, high=np.inf, shape=(env.get_ob_dim(),), dtype=np.float32
        )
        self._ob = np.zeros(env.get_ob_dim(), dtype=np.float32)
        self._episode_step = 0

    @classmethod
    def from_cfg(cls, cfg=None, *, render_mode: Optional[str] = None, **overrides) -> "WalkerGymEnv":
        return cls(load_walker_env(cfg, **overrides), render_mode=render_mode)

    # --------------- Gymnasium API ---------------
    def reset(self, *, seed: Optional[int] = None, options: Optional[dict] = None) -> Tuple[np.ndarray, dict]:
        super().reset(seed=seed, options=options)
        if seed is not None:
            self.env.set_seed(seed)
        self.env.reset()
        self._episode_step = 0
        return self._obs(), {"episode_step": 0}

    def step(self, action) -> Tuple[np.ndarray, float, bool, bool, dict]:
        action = np.asarray(action, dtype=self.action_space.dtype)  # make sure correct dtype
        action = np.clip(action, self.action_space.low, self.action_space.high)

        reward = self.env.step(action)
        self._episode_step += 1

        terminated, terminal_reward = self.env.is_terminal_state()
        if terminated:
            reward = terminal_reward
        truncated = (not terminated) and self._episode_step >= self.max_episode_steps

        info = {
            "terminal_reward": float(terminal_reward),
            "episode_step": self._episode_step,
        }
        return self._obs(), float(reward), bool(terminated), bool(truncated), info

    def render(self) -> Optional[np.ndarray]:
        if self.render_mode is None:
            gym.logger.warn("render() called without a render_mode; pass render_mode=\"rgb_array\".")
            return None
        physics = getattr(self.env.get_world(), "physics", None)
        if physics is None:
            raise NotImplementedError("rgb_array rendering needs the MuJoCo backend.")
        h, w = self.render_size
        camera = "track" if mujoco.mj_name2id(physics.model.ptr, mujoco.mjtObj.mjOBJ_CAMERA, "track") >= 0 else -1
        return physics.render(height=h, width=w, camera_id=camera)

    def close(self) -> None:
        self.env.shutdown()

    # --------------- Internals ---------------
    def _obs(self) -> np.ndarray:
        return self.env.observe(self._ob).copy()


def walker_env_factory(cfg=None, *, seed: int = 0, monitor: bool = False, **overrides) -> Callable[[], gym.Env]:
    """Thunk for SB3 vec envs: each call builds an independent world with its own seed."""
    def _init() -> gym.Env:
        env = WalkerGymEnv.from_cfg(cfg, seed=seed, **overrides)
        env.reset(seed=seed)
        if monitor:
            from stable_baselines3.common.monitor import Monitor
            env = Monitor(env)
        return env
    return _init


def make_vec_walker_env(n_envs: int, cfg=None, *, base_seed: Optional[int] = None, monitor: bool = True):
    """DummyVecEnv of n independent walkers, seeded base_seed, base_seed + 1, ..."""
    from stable_baselines3.common.vec_env import DummyVecEnv

    full: Dict[str, Any] = resolve_cfg(cfg)
    seed0 = int(full["seed"] if base_seed is None else base_seed)
    full.pop("seed", None)
    return DummyVecEnv([walker_env_factory(full, seed=seed0 + i, monitor=monitor) for i in range(int(n_envs))])
