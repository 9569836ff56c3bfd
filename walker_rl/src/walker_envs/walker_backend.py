# walker_backend.py
from __future__ import annotations
import abc
from pathlib import Path
from typing import List, Tuple

import numpy as np
import mujoco
from dm_control import mjcf
from dm_control import mujoco as dm_mujoco

BASE_DOFS = 6   # free-floating base: 3 linear + 3 angular velocity rows
BASE_QPOS = 7   # 3 position + 4 quaternion (w, x, y, z)
GROUND_GEOM = "ground"

_FREE = int(mujoco.mjtJoint.mjJNT_FREE)
_HINGE_LIKE = (int(mujoco.mjtJoint.mjJNT_HINGE), int(mujoco.mjtJoint.mjJNT_SLIDE))


class WalkerBackend(abc.ABC):
    """
    Capabilities the walker controller needs from a physics engine.

    State layout is fixed by this interface, whatever the engine stores:
      gc = [base_pos(3), base_quat wxyz(4), joint angles]
      gv = [base_lin_vel world(3), base_ang_vel world(3), joint velocities]
    """

    @property
    @abc.abstractmethod
    def gc_dim(self) -> int: ...

    @property
    @abc.abstractmethod
    def gv_dim(self) -> int: ...

    @property
    @abc.abstractmethod
    def robot_name(self) -> str:
        """Name of the base body (used to focus viewers on the robot)."""

    @abc.abstractmethod
    def body_index(self, name: str) -> int:
        """Raise ValueError if the robot has no body called `name`."""

    @abc.abstractmethod
    def contact_body_indices(self) -> List[int]:
        """Robot-side body index of every active contact."""

    @abc.abstractmethod
    def set_state(self, gc: np.ndarray, gv: np.ndarray) -> None: ...

    @abc.abstractmethod
    def get_state(self) -> Tuple[np.ndarray, np.ndarray]: ...

    @abc.abstractmethod
    def set_pd_gains(self, p_gain: np.ndarray, d_gain: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_pd_target(self, p_target: np.ndarray, v_target: np.ndarray) -> None: ...

    @abc.abstractmethod
    def set_generalized_force(self, force: np.ndarray) -> None: ...

    @abc.abstractmethod
    def get_generalized_force(self) -> np.ndarray: ...

    @abc.abstractmethod
    def integrate(self) -> None:
        """Advance the world by exactly one fixed time step."""

    @abc.abstractmethod
    def set_time_step(self, dt: float) -> None: ...

    @abc.abstractmethod
    def get_time_step(self) -> float: ...

    @abc.abstractmethod
    def add_ground(self) -> None: ...


# ---------- Physics helpers ----------
class WalkerPhysics(dm_mujoco.Physics):

    def base_body_id(self) -> int:
        free = np.nonzero(np.asarray(self.model.jnt_type) == _FREE)[0]
        if free.size == 0:
            raise RuntimeError("No free joint; base is fixed.")
        return int(self.model.jnt_bodyid[int(free[0])])

    def base_height(self) -> float:
        return float(self.data.qpos[2])

    def base_rotmat(self, quat=None) -> np.ndarray:
        """Body-to-world rotation of the base from a wxyz quaternion (default: current qpos)."""
        q = self.data.qpos[3:7] if quat is None else quat
        mat = np.zeros(9, dtype=np.float64)
        mujoco.mju_quat2Mat(mat, np.asarray(q, dtype=np.float64))
        return mat.reshape(3, 3)

    def contact_body_ids(self) -> List[int]:
        # world (body 0) is never reported, only the robot side of each contact
        ncon = int(self.data.ncon)
        if ncon == 0:
            return []
        geom_bodyid = self.model.geom_bodyid
        contacts = self.data.contact
        out = []
        for i in range(ncon):
            c = contacts[i]
            for g in (int(c.geom1), int(c.geom2)):
                b = int(geom_bodyid[g])
                if b != 0:
                    out.append(b)
        return out


class MujocoWalkerBackend(WalkerBackend):
    """
    MuJoCo (through dm_control) backend for a floating-base walker.

    - Robot description: MJCF file, parsed with PyMJCF so a ground plane can
      be added before compiling.
    - PD control is explicit: before every mj_step the joint torques
      kp * (p_target - q) + kd * (v_target - qd) + feedforward are written to
      qfrc_applied. The gain/target rows of the base are not used.
    - MuJoCo keeps the free-joint angular velocity in the body frame; it is
      converted to the world frame in get_state/set_state.
    """

    def __init__(self, resource: str | Path):
        self.resource = Path(resource)
        if not self.resource.is_file():
            raise FileNotFoundError(f"Robot description not found: {self.resource}")
        self._mjcf_model = mjcf.from_path(str(self.resource))
        self._time_step = None
        self._compile()

    def _compile(self) -> None:
        self.physics = WalkerPhysics.from_xml_string(
            self._mjcf_model.to_xml_string(), assets=self._mjcf_model.get_assets()
        )
        model = self.physics.model

        self._base_id = self.physics.base_body_id()
        if int(model.jnt_qposadr[0]) != 0 or int(model.jnt_type[0]) != _FREE:
            raise ValueError(f"{self.resource.name}: the first joint must be the free joint of the base.")
        for jid in range(1, int(model.njnt)):
            if int(model.jnt_type[jid]) not in _HINGE_LIKE:
                raise ValueError(f"{self.resource.name}: only hinge/slide joints are supported below the base.")

        nq, nv = int(model.nq), int(model.nv)
        self._p_gain = np.zeros(nv)
        self._d_gain = np.zeros(nv)
        self._p_target = np.zeros(nq)
        self._v_target = np.zeros(nv)
        self._feedforward = np.zeros(nv)
        self._generalized_force = np.zeros(nv)
        if self._time_step is not None:
            model.opt.timestep = self._time_step

    # --- dimensions / lookup ---
    @property
    def gc_dim(self) -> int:
        return int(self.physics.model.nq)

    @property
    def gv_dim(self) -> int:
        return int(self.physics.model.nv)

    @property
    def robot_name(self) -> str:
        return mujoco.mj_id2name(self.physics.model.ptr, mujoco.mjtObj.mjOBJ_BODY, self._base_id)

    def body_index(self, name: str) -> int:
        bid = mujoco.mj_name2id(self.physics.model.ptr, mujoco.mjtObj.mjOBJ_BODY, name)
        if bid < 0:
            raise ValueError(f"Unknown body {name!r} in {self.resource.name}.")
        return int(bid)

    def contact_body_indices(self) -> List[int]:
        return self.physics.contact_body_ids()

    # --- state ---
    def set_state(self, gc, gv) -> None:
        gc = np.asarray(gc, dtype=np.float64).reshape(-1)
        gv = np.asarray(gv, dtype=np.float64).reshape(-1)
        if gc.size != self.gc_dim or gv.size != self.gv_dim:
            raise ValueError(f"State size mismatch: gc {gc.size}/{self.gc_dim}, gv {gv.size}/{self.gv_dim}.")
        qvel = gv.copy()
        qvel[3:6] = self.physics.base_rotmat(gc[3:7]).T @ gv[3:6]
        self.physics.data.qpos[:] = gc
        self.physics.data.qvel[:] = qvel
        self.physics.forward()

    def get_state(self):
        gc = np.array(self.physics.data.qpos, dtype=np.float64)
        gv = np.array(self.physics.data.qvel, dtype=np.float64)
        gv[3:6] = self.physics.base_rotmat(gc[3:7]) @ gv[3:6]
        return gc, gv

    # --- PD actuation ---
    def set_pd_gains(self, p_gain, d_gain) -> None:
        p = np.asarray(p_gain, dtype=np.float64).reshape(-1)
        d = np.asarray(d_gain, dtype=np.float64).reshape(-1)
        if p.size != self.gv_dim or d.size != self.gv_dim:
            raise ValueError(f"PD gains must have {self.gv_dim} entries, got {p.size} and {d.size}.")
        self._p_gain, self._d_gain = p.copy(), d.copy()

    def set_pd_target(self, p_target, v_target) -> None:
        p = np.asarray(p_target, dtype=np.float64).reshape(-1)
        v = np.asarray(v_target, dtype=np.float64).reshape(-1)
        if p.size != self.gc_dim or v.size != self.gv_dim:
            raise ValueError(f"PD targets must have sizes {self.gc_dim}/{self.gv_dim}, got {p.size}/{v.size}.")
        self._p_target, self._v_target = p.copy(), v.copy()

    def set_generalized_force(self, force) -> None:
        f = np.asarray(force, dtype=np.float64).reshape(-1)
        if f.size != self.gv_dim:
            raise ValueError(f"Generalized force must have {self.gv_dim} entries, got {f.size}.")
        self._feedforward = f.copy()
        self._generalized_force = f.copy()

    def get_generalized_force(self) -> np.ndarray:
        return self._generalized_force.copy()

    def _pd_force(self) -> np.ndarray:
        q = self.physics.data.qpos[BASE_QPOS:]
        qd = self.physics.data.qvel[BASE_DOFS:]
        tau = self._feedforward.copy()
        tau[BASE_DOFS:] += (self._p_gain[BASE_DOFS:] * (self._p_target[BASE_QPOS:] - q)
                            + self._d_gain[BASE_DOFS:] * (self._v_target[BASE_DOFS:] - qd))
        return tau

    # --- time ---
    def integrate(self) -> None:
        self._generalized_force = self._pd_force()
        self.physics.data.qfrc_applied[:] = self._generalized_force
        # raises dm_control PhysicsError on divergence
        self.physics.step()

    def set_time_step(self, dt: float) -> None:
        self._time_step = float(dt)
        self.physics.model.opt.timestep = self._time_step

    def get_time_step(self) -> float:
        return float(self.physics.model.opt.timestep)

    # --- world ---
    def add_ground(self) -> None:
        if self._mjcf_model.find("geom", GROUND_GEOM) is not None:
            return
        self._mjcf_model.worldbody.add(
            "geom", name=GROUND_GEOM, type="plane", size=[0, 0, 0.125],
            contype=1, conaffinity=1, condim=3,
            friction=[1.0, 0.005, 0.0001], rgba=[0.8, 0.9, 0.8, 1],
        )
        # keep gains/targets across the recompile
        saved = (self._p_gain, self._d_gain, self._p_target, self._v_target, self._feedforward)
        self._compile()
        self._p_gain, self._d_gain, self._p_target, self._v_target, self._feedforward = saved
