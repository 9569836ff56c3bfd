# walker_env.py
from __future__ import annotations
import contextlib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from walker_rl.src.utils.log_msgs import info_msg, warn_msg
from walker_rl.src.utils.utils import merge_cfg
from walker_rl.src.walker_envs.walker_backend import (
    BASE_DOFS, MujocoWalkerBackend, WalkerBackend,
)
from walker_rl.src.walker_envs.walker_config import ENV_CFG, REWARD_CFG, resolve_robot
from walker_rl.src.walker_envs.walker_viewer import MujocoWalkerViewer, WalkerVisualizer

_NO_VIS_MSG = "visualization is not enabled for this environment (construct it with visualizable=True)"


def quat_to_rotmat(q: np.ndarray) -> np.ndarray:
    """Rotation matrix (body -> world) of a w, x, y, z quaternion."""
    w, x, y, z = (float(v) for v in q)
    return np.array([
        [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z),       2.0 * (x * z + w * y)],
        [2.0 * (x * y + w * z),       1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)],
        [2.0 * (x * z - w * y),       2.0 * (y * z + w * x),       1.0 - 2.0 * (x * x + y * y)],
    ])


class WalkerEnv:
    """
    Quadruped walker environment over a physics backend.

    One control step = int(control_dt / simulation_dt) integrations under PD
    joint control. Actions are joint position targets around the standing pose:
        p_target[joints] = action * action_std + action_mean
    Reward per control step:
        -4e-5 * ||generalized force||^2 + 0.3 * min(4.0, forward body velocity)
    Termination is advisory: any contact on a body that is not a foot.

    Observation (ob_dim = 34 for 12 joints):
        [ base height (1),
          third row of the base rotation matrix (3),
          joint angles (n),
          base linear velocity, body frame (3),
          base angular velocity, body frame (3),
          joint velocities (n) ]
    """

    def __init__(
        self,
        resource: str | Path,
        visualizable: bool = False,
        cfg: Optional[Mapping[str, Any]] = None,
        backend: Optional[WalkerBackend] = None,
        visualizer: Optional[WalkerVisualizer] = None,
    ):
        self.cfg: Dict[str, Any] = merge_cfg(ENV_CFG, cfg)
        self.visualizable = bool(visualizable)
        self.visualizer: Optional[WalkerVisualizer] = None
        self._closed = False

        # --- world ---
        self.world: WalkerBackend = backend if backend is not None else MujocoWalkerBackend(resource)
        self.world.add_ground()

        self.gc_dim = int(self.world.gc_dim)
        self.gv_dim = int(self.world.gv_dim)
        self.n_joints = self.gv_dim - BASE_DOFS

        self.gc = np.zeros(self.gc_dim)
        self.gv = np.zeros(self.gv_dim)
        self.p_target = np.zeros(self.gc_dim)
        self.v_target = np.zeros(self.gv_dim)

        self.gc_init = np.asarray(self.cfg["init_pose"], dtype=np.float64).reshape(-1).copy()
        if self.gc_init.size != self.gc_dim:
            raise ValueError(f"init_pose has {self.gc_init.size} entries, robot has gc_dim={self.gc_dim}.")
        self.gv_init = np.zeros(self.gv_dim)

        # PD gains on joints only; the base stays free-floating
        self.p_gain = np.zeros(self.gv_dim)
        self.d_gain = np.zeros(self.gv_dim)
        self.p_gain[-self.n_joints:] = float(self.cfg["p_gain"])
        self.d_gain[-self.n_joints:] = float(self.cfg["d_gain"])
        self.world.set_pd_gains(self.p_gain, self.d_gain)
        self.world.set_generalized_force(np.zeros(self.gv_dim))

        self.ob_dim = 1 + 3 + 3 + 3 + 2 * self.n_joints
        self.action_dim = self.n_joints
        self.ob_double = np.zeros(self.ob_dim)
        self.body_lin_vel = np.zeros(3)
        self.body_ang_vel = np.zeros(3)

        self.action_mean = self.gc_init[-self.n_joints:].copy()
        self.action_std = np.full(self.action_dim, float(self.cfg["action_std"]))

        self.foot_indices = frozenset(self.world.body_index(name) for name in self.cfg["foot_bodies"])
        self.terminal_reward_coeff = float(self.cfg["terminal_reward_coeff"])
        self.reward_cfg = dict(REWARD_CFG)

        self.simulation_dt = float(self.cfg["simulation_dt"])
        self.control_dt = float(self.cfg["control_dt"])
        self.world.set_time_step(self.simulation_dt)

        self.rng = np.random.default_rng(self.cfg["seed"])
        self.init_noise_std = float(self.cfg.get("init_noise_std", 0.0))

        if self.visualizable:
            if visualizer is None:
                if not isinstance(self.world, MujocoWalkerBackend):
                    raise ValueError("Pass a visualizer explicitly when using a non-MuJoCo backend.")
                visualizer = MujocoWalkerViewer(
                    self.world, video_fps=self.cfg["video_fps"], video_size=self.cfg["video_size"],
                )
            self.visualizer = visualizer
            self.visualizer.launch()
            self.visualizer.focus_on(self.world.robot_name)
        elif visualizer is not None:
            warn_msg("A visualizer was given but visualizable=False; it is ignored.", tag="walker")

        info_msg(
            f"WalkerEnv ready: gc_dim={self.gc_dim} gv_dim={self.gv_dim} "
            f"ob_dim={self.ob_dim} action_dim={self.action_dim} "
            f"sim_dt={self.simulation_dt} control_dt={self.control_dt}",
            tag="walker",
        )
        self.init()

    @classmethod
    def from_cfg(cls, cfg: Optional[Mapping[str, Any]] = None, **kwargs) -> "WalkerEnv":
        """Build from a configuration map overlaid on ENV_CFG (robot, visualize, timings, ...)."""
        merged = merge_cfg(ENV_CFG, cfg)
        return cls(
            resolve_robot(merged["robot"]),
            visualizable=bool(merged["visualize"]),
            cfg=merged,
            **kwargs,
        )

    # ---------------------------
    # configuration
    # ---------------------------
    def set_init_constants(self, gc_init, gv_init, action_mean, action_std, p_gain, d_gain) -> None:
        vals = [np.asarray(v, dtype=np.float64).reshape(-1)
                for v in (gc_init, gv_init, action_mean, action_std, p_gain, d_gain)]
        expected = (self.gc_dim, self.gv_dim, self.action_dim, self.action_dim, self.gv_dim, self.gv_dim)
        names = ("gc_init", "gv_init", "action_mean", "action_std", "p_gain", "d_gain")
        for name, v, n in zip(names, vals, expected):
            if v.size != n:
                raise ValueError(f"{name} must have {n} entries, got {v.size}.")

        self.gc_init, self.gv_init, self.action_mean, self.action_std, self.p_gain, self.d_gain = (
            v.copy() for v in vals
        )
        self.world.set_pd_gains(self.p_gain, self.d_gain)

    def set_simulation_time_step(self, dt: float) -> None:
        self.simulation_dt = float(dt)
        self.world.set_time_step(self.simulation_dt)

    def set_control_time_step(self, dt: float) -> None:
        self.control_dt = float(dt)

    def get_simulation_time_step(self) -> float:
        return self.simulation_dt

    def get_control_time_step(self) -> float:
        return self.control_dt

    def get_ob_dim(self) -> int:
        return self.ob_dim

    def get_action_dim(self) -> int:
        return self.action_dim

    def get_world(self) -> WalkerBackend:
        return self.world

    def set_seed(self, seed: int) -> None:
        # reseeds this env's generator; the physics itself is deterministic
        self.rng = np.random.default_rng(seed)

    def curriculum_update(self) -> None:
        pass

    # ---------------------------
    # episode
    # ---------------------------
    def _check_open(self, op: str) -> None:
        if self._closed:
            raise RuntimeError(f"{op}() called on a shut down WalkerEnv.")

    def init(self) -> None:
        self._check_open("init")
        self._set_initial_state()

    def reset(self) -> None:
        self._check_open("reset")
        self._set_initial_state()

    def _set_initial_state(self) -> None:
        gc = self.gc_init
        if self.init_noise_std > 0.0:
            gc = gc.copy()
            gc[-self.n_joints:] += self.rng.normal(0.0, self.init_noise_std, size=self.n_joints)
        self.world.set_state(gc, self.gv_init)
        self.update_observation()

    def n_substeps(self) -> int:
        return int(self.control_dt / self.simulation_dt + 1e-10)

    def step(self, action) -> float:
        self._check_open("step")
        action = np.asarray(action, dtype=np.float64).reshape(-1)
        if action.size != self.action_dim:
            raise ValueError(f"Action must have {self.action_dim} entries, got {action.size}.")

        self.p_target[-self.n_joints:] = action * self.action_std + self.action_mean
        self.world.set_pd_target(self.p_target, self.v_target)

        for _ in range(self.n_substeps()):
            lock = self.visualizer.lock() if self.visualizer is not None else contextlib.nullcontext()
            with lock:
                self.world.integrate()

        if self.visualizer is not None:
            self.visualizer.sync()

        self.update_observation()
        return self.compute_reward()

    def compute_reward(self) -> float:
        force = self.world.get_generalized_force()
        torque = self.reward_cfg["torque_coeff"] * float(np.dot(force, force))
        forward = self.reward_cfg["forward_vel_coeff"] * min(
            self.reward_cfg["forward_vel_cap"], float(self.body_lin_vel[0])
        )
        return float(torque + forward)

    # ---------------------------
    # observation / termination
    # ---------------------------
    def update_observation(self) -> None:
        gc, gv = self.world.get_state()
        self.gc = np.asarray(gc, dtype=np.float64).reshape(-1).copy()
        self.gv = np.asarray(gv, dtype=np.float64).reshape(-1).copy()

        rot = quat_to_rotmat(self.gc[3:7])
        self.body_lin_vel = rot.T @ self.gv[0:3]
        self.body_ang_vel = rot.T @ self.gv[3:6]

        self.ob_double = np.concatenate([
            self.gc[2:3],
            rot[2, :],
            self.gc[-self.n_joints:],
            self.body_lin_vel,
            self.body_ang_vel,
            self.gv[-self.n_joints:],
        ])

    def observe(self, ob: Optional[np.ndarray] = None) -> np.ndarray:
        out = self.ob_double.astype(np.float32)
        if ob is not None:
            ob[...] = out.reshape(np.shape(ob))
            return ob
        return out

    def is_terminal_state(self, threshold: float = 0.0) -> Tuple[bool, float]:
        """(True, terminal_reward_coeff) if any non-foot body touches something."""
        # threshold is part of the host interface but unused
        for body in self.world.contact_body_indices():
            if body not in self.foot_indices:
                return True, self.terminal_reward_coeff
        return False, 0.0

    # ---------------------------
    # visualization
    # ---------------------------
    def _require_visualizer(self) -> WalkerVisualizer:
        if self.visualizer is None:
            raise RuntimeError(_NO_VIS_MSG)
        return self.visualizer

    def turn_off_visualization(self) -> None:
        self._require_visualizer().hibernate()

    def turn_on_visualization(self) -> None:
        self._require_visualizer().wakeup()

    def start_recording_video(self, path: str) -> None:
        self._require_visualizer().start_recording_video(path)

    def stop_recording_video(self) -> None:
        self._require_visualizer().stop_recording_video()

    # ---------------------------
    # lifecycle
    # ---------------------------
    def close(self) -> None:
        pass

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.visualizer is not None:
            self.visualizer.kill()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "WalkerEnv":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    def __del__(self):
        # construction may have failed before the lifecycle fields existed
        if getattr(self, "_closed", True):
            return
        self.shutdown()

    # ---------------------------
    # camelCase host surface
    # ---------------------------
    def isTerminalState(self, threshold: float = 0.0) -> bool:
        return self.is_terminal_state(threshold)[0]

    setInitConstants = set_init_constants
    updateObservation = update_observation
    curriculumUpdate = curriculum_update
    setSimulationTimeStep = set_simulation_time_step
    setControlTimeStep = set_control_time_step
    getSimulationTimeStep = get_simulation_time_step
    getControlTimeStep = get_control_time_step
    getObDim = get_ob_dim
    getActionDim = get_action_dim
    getWorld = get_world
    setSeed = set_seed
    turnOffVisualization = turn_off_visualization
    turnOnVisualization = turn_on_visualization
    startRecordingVideo = start_recording_video
    stopRecordingVideo = stop_recording_video
