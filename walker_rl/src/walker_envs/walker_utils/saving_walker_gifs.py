from __future__ import annotations
from typing import Callable, Optional

import mujoco
import numpy as np

from walker_rl.src.utils.log_msgs import info_msg, success_msg, warn_msg
from walker_rl.src.walker_envs.walker_viewer import FrameRecorder


def _pick_camera(physics, camera: int | str | None) -> int | str:
    """Named camera if present, else the first model camera, else the free camera."""
    m = physics.model
    if isinstance(camera, str):
        if mujoco.mj_name2id(m.ptr, mujoco.mjtObj.mjOBJ_CAMERA, camera) >= 0:
            return camera
        warn_msg(f"Camera {camera!r} not in model; falling back.", tag="gif")
    elif camera is not None:
        return camera
    return 0 if int(m.ncam) > 0 else -1


def zero_policy(env) -> Callable[[np.ndarray], np.ndarray]:
    """Hold the standing pose."""
    return lambda ob: np.zeros(env.get_action_dim(), dtype=np.float32)


def random_policy(env, scale: float = 1.0, seed: int = 0) -> Callable[[np.ndarray], np.ndarray]:
    rng = np.random.default_rng(seed)
    return lambda ob: rng.uniform(-scale, scale, size=env.get_action_dim()).astype(np.float32)


def record_gif_from_env(
    walker_env,
    out_path: str,
    steps: int = 500,
    size: tuple[int, int] = (480, 640),
    camera: int | str | None = "track",
    policy_fn: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    fps: int = 25,
    slowmo: float = 1.0,
    stop_on_terminal: bool = True,
):
    """
    Headless rollout of `policy_fn` (observation -> action) on a WalkerEnv with the
    MuJoCo backend. Frames are rendered offscreen, kept every 1/fps of sim time and
    stamped with the sim time; GIF frame durations follow sim time.
    """
    physics = walker_env.get_world().physics
    camera = _pick_camera(physics, camera)
    if policy_fn is None:
        policy_fn = zero_policy(walker_env)

    h, w = size
    recorder = FrameRecorder(out_path, fps=fps, slowmo=slowmo)

    walker_env.reset()
    ob = walker_env.observe()
    recorder.add(physics.render(height=h, width=w, camera_id=camera), float(physics.data.time))

    total_reward = 0.0
    t = 0
    while t < steps:
        total_reward += walker_env.step(policy_fn(ob))
        ob = walker_env.observe()
        sim_time = float(physics.data.time)
        if recorder.should_capture(sim_time):
            recorder.add(physics.render(height=h, width=w, camera_id=camera), sim_time)
        t += 1
        if stop_on_terminal:
            done, _ = walker_env.is_terminal_state()
            if done:
                info_msg(f"step {t} - episode terminated, time={sim_time:.2f}s", tag="gif")
                break

    info_msg(f"Captured {len(recorder.frames)} frames over {physics.data.time:.3f}s sim time.", tag="gif")
    out = recorder.save()
    success_msg(f"Saved GIF: {out}  frames={len(recorder.frames)}  "
                f"sum_dur={sum(recorder.durations):.3f}s  return={total_reward:.3f}", tag="gif")
    return out
