# Recording stand-ins for the physics backend and the viewer.
from __future__ import annotations
import contextlib
from typing import List

import numpy as np

from walker_rl.src.walker_envs.walker_backend import WalkerBackend
from walker_rl.src.walker_envs.walker_viewer import WalkerVisualizer

# body indices of an 18-DOF quadruped: base, then HIP/THIGH/SHANK per leg
QUAD_BODIES = {"base": 1}
for _i, _leg in enumerate(("LF", "RF", "LH", "RH")):
    for _j, _part in enumerate(("HIP", "THIGH", "SHANK")):
        QUAD_BODIES[f"{_leg}_{_part}"] = 2 + 3 * _i + _j


class FakeBackend(WalkerBackend):
    """State is whatever the test writes into gc/gv; integrate() only logs."""

    def __init__(self, gc_dim: int = 19, gv_dim: int = 18, events: List[str] | None = None):
        self._gc_dim, self._gv_dim = gc_dim, gv_dim
        self.events = events if events is not None else []
        self.gc = np.zeros(gc_dim)
        self.gv = np.zeros(gv_dim)
        self.p_gain = np.zeros(gv_dim)
        self.d_gain = np.zeros(gv_dim)
        self.p_target = np.zeros(gc_dim)
        self.v_target = np.zeros(gv_dim)
        self.force = np.zeros(gv_dim)
        self.contacts: List[int] = []
        self.dt = None
        self.n_integrations = 0
        self.ground_added = 0

    @property
    def gc_dim(self) -> int:
        return self._gc_dim

    @property
    def gv_dim(self) -> int:
        return self._gv_dim

    @property
    def robot_name(self) -> str:
        return "base"

    def body_index(self, name: str) -> int:
        if name not in QUAD_BODIES:
            raise ValueError(f"Unknown body {name!r}")
        return QUAD_BODIES[name]

    def contact_body_indices(self):
        return list(self.contacts)

    def set_state(self, gc, gv) -> None:
        self.gc = np.array(gc, dtype=np.float64)
        self.gv = np.array(gv, dtype=np.float64)

    def get_state(self):
        return self.gc.copy(), self.gv.copy()

    def set_pd_gains(self, p_gain, d_gain) -> None:
        self.p_gain, self.d_gain = np.array(p_gain), np.array(d_gain)

    def set_pd_target(self, p_target, v_target) -> None:
        self.p_target, self.v_target = np.array(p_target), np.array(v_target)

    def set_generalized_force(self, force) -> None:
        self.force = np.array(force, dtype=np.float64)

    def get_generalized_force(self):
        return self.force.copy()

    def integrate(self) -> None:
        self.n_integrations += 1
        self.events.append("integrate")

    def set_time_step(self, dt: float) -> None:
        self.dt = float(dt)

    def get_time_step(self) -> float:
        return self.dt

    def add_ground(self) -> None:
        self.ground_added += 1


class FakeVisualizer(WalkerVisualizer):

    def __init__(self, events: List[str] | None = None):
        self.events = events if events is not None else []
        self.focused = None
        self.recording = None
        self.kills = 0

    def launch(self) -> None:
        self.events.append("launch")

    def focus_on(self, body_name: str) -> None:
        self.focused = body_name
        self.events.append("focus")

    def hibernate(self) -> None:
        self.events.append("hibernate")

    def wakeup(self) -> None:
        self.events.append("wakeup")

    def start_recording_video(self, path: str) -> None:
        self.recording = path
        self.events.append("start_recording")

    def stop_recording_video(self) -> None:
        self.recording = None
        self.events.append("stop_recording")

    @contextlib.contextmanager
    def lock(self):
        self.events.append("lock_enter")
        yield
        self.events.append("lock_exit")

    def sync(self) -> None:
        self.events.append("sync")

    def kill(self) -> None:
        self.kills += 1
        self.events.append("kill")
