# Controller contract on a recording backend (no physics engine involved).
from __future__ import annotations
import os, sys
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.join(current_dir, '../../../..')
sys.path.append(project_root)

import numpy as np
import pytest

from walker_rl.src.walker_envs.walker_config import STANDING_POSE
from walker_rl.src.walker_envs.walker_env import WalkerEnv, quat_to_rotmat
from walker_rl.src.walker_envs.test_walker.fakes import FakeBackend, FakeVisualizer, QUAD_BODIES


def make_env(cfg=None, visualize: bool = False, events=None):
    events = [] if events is None else events
    backend = FakeBackend(events=events)
    vis = FakeVisualizer(events=events) if visualize else None
    env = WalkerEnv("unused.xml", visualizable=visualize, cfg=cfg, backend=backend, visualizer=vis)
    return env, backend, vis


# ---------------------------
# construction
# ---------------------------

def test_dimensions_for_18_dof_quadruped():
    env, backend, _ = make_env()
    assert env.get_ob_dim() == 34
    assert env.get_action_dim() == 12
    assert env.getObDim() == 34 and env.getActionDim() == 12
    assert backend.ground_added == 1
    assert env.observe().shape == (34,)


def test_gains_only_on_joints_and_force_zeroed():
    env, backend, _ = make_env()
    np.testing.assert_array_equal(backend.p_gain[:6], 0.0)
    np.testing.assert_array_equal(backend.d_gain[:6], 0.0)
    np.testing.assert_array_equal(backend.p_gain[6:], 50.0)
    np.testing.assert_array_equal(backend.d_gain[6:], 0.2)
    np.testing.assert_array_equal(backend.force, 0.0)


def test_construction_applies_sim_dt_and_sets_standing_pose():
    env, backend, _ = make_env()
    assert backend.dt == pytest.approx(0.0025)
    np.testing.assert_array_equal(backend.gc, np.asarray(STANDING_POSE))
    np.testing.assert_array_equal(backend.gv, 0.0)


def test_unknown_foot_body_raises():
    with pytest.raises(ValueError):
        make_env(cfg={"foot_bodies": ("LF_SHANK", "NOT_A_BODY")})


def test_wrong_length_standing_pose_raises():
    with pytest.raises(ValueError):
        make_env(cfg={"init_pose": STANDING_POSE[:-1]})


# ---------------------------
# stepping
# ---------------------------

def test_pd_target_transform_and_zero_base_targets():
    env, backend, _ = make_env()
    joints = np.asarray(STANDING_POSE[7:])

    env.step(np.zeros(12))
    np.testing.assert_array_equal(backend.p_target[:7], 0.0)
    np.testing.assert_allclose(backend.p_target[7:], joints)
    np.testing.assert_array_equal(backend.v_target, 0.0)

    env.step(np.ones(12))
    np.testing.assert_allclose(backend.p_target[7:], joints + 0.3)
    np.testing.assert_array_equal(backend.p_target[:7], 0.0)
    np.testing.assert_array_equal(backend.v_target, 0.0)


def test_substeps_per_control_step():
    env, backend, _ = make_env()
    env.set_simulation_time_step(0.005)
    env.set_control_time_step(0.02)
    assert backend.dt == pytest.approx(0.005)
    env.step(np.zeros(12))
    assert backend.n_integrations == 4

    # 0.01 / 0.001 is 9.999999999999998 in floating point
    backend.n_integrations = 0
    env.set_simulation_time_step(0.001)
    env.set_control_time_step(0.01)
    env.step(np.zeros(12))
    assert backend.n_integrations == 10


def test_time_step_getters_and_aliases():
    env, _, _ = make_env()
    env.setControlTimeStep(0.04)
    env.setSimulationTimeStep(0.002)
    assert env.get_control_time_step() == 0.04
    assert env.getSimulationTimeStep() == 0.002


def test_lock_brackets_every_integration_then_sync():
    events = []
    env, _, _ = make_env(visualize=True, events=events)
    events.clear()
    env.set_simulation_time_step(0.005)
    env.set_control_time_step(0.02)
    env.step(np.zeros(12))
    assert events == ["lock_enter", "integrate", "lock_exit"] * 4 + ["sync"]


def test_wrong_action_size_raises():
    env, backend, _ = make_env()
    with pytest.raises(ValueError):
        env.step(np.zeros(11))
    assert backend.n_integrations == 0


def test_reward_velocity_term_is_capped():
    env, backend, _ = make_env()
    backend.gv[0] = 10.0
    r_fast = env.step(np.zeros(12))
    backend.gv[0] = 4.0
    r_cap = env.step(np.zeros(12))
    assert r_fast == pytest.approx(1.2)
    assert r_fast == r_cap

    backend.gv[0] = 1.0
    assert env.step(np.zeros(12)) == pytest.approx(0.3)


def test_reward_torque_penalty():
    env, backend, _ = make_env()
    backend.force = np.full(18, 10.0)
    # -4e-5 * 18 * 100, no forward velocity
    assert env.step(np.zeros(12)) == pytest.approx(-0.072)


# ---------------------------
# observation
# ---------------------------

def test_observation_layout_after_reset():
    env, _, _ = make_env()
    env.reset()
    ob = env.observe()
    assert ob.dtype == np.float32
    assert ob[0] == pytest.approx(0.5)
    np.testing.assert_allclose(ob[1:4], [0.0, 0.0, 1.0])
    np.testing.assert_allclose(ob[4:16], np.asarray(STANDING_POSE[7:], dtype=np.float32))
    np.testing.assert_array_equal(ob[16:], 0.0)


def test_observation_velocities_in_body_frame():
    env, backend, _ = make_env()
    # base yawed by +90 degrees
    backend.gc[3:7] = [np.cos(np.pi / 4), 0.0, 0.0, np.sin(np.pi / 4)]
    backend.gv[0:3] = [1.0, 0.0, 0.0]
    backend.gv[3:6] = [0.0, 0.0, 2.0]
    backend.gv[6:] = np.arange(12)
    env.update_observation()
    ob = env.observe()
    np.testing.assert_allclose(ob[16:19], [0.0, -1.0, 0.0], atol=1e-6)
    np.testing.assert_allclose(ob[19:22], [0.0, 0.0, 2.0], atol=1e-6)
    np.testing.assert_allclose(ob[22:], np.arange(12))


def test_quat_to_rotmat_identity_and_yaw():
    np.testing.assert_allclose(quat_to_rotmat([1, 0, 0, 0]), np.eye(3))
    r = quat_to_rotmat([np.cos(np.pi / 4), 0.0, 0.0, np.sin(np.pi / 4)])
    np.testing.assert_allclose(r, [[0, -1, 0], [1, 0, 0], [0, 0, 1]], atol=1e-12)


def test_observe_fills_caller_buffer():
    env, _, _ = make_env()
    buf = np.full(34, -1.0, dtype=np.float32)
    out = env.observe(buf)
    assert out is buf
    assert buf[0] == pytest.approx(0.5)


def test_reset_is_idempotent():
    env, backend, _ = make_env()
    env.reset()
    first = env.observe().copy()
    backend.gv[:] = 3.0
    env.step(np.ones(12))
    env.reset()
    np.testing.assert_array_equal(env.observe(), first)


# ---------------------------
# termination
# ---------------------------

def test_no_contacts_is_not_terminal():
    env, backend, _ = make_env()
    backend.contacts = []
    assert env.is_terminal_state() == (False, 0.0)


def test_foot_contacts_are_not_terminal():
    env, backend, _ = make_env()
    backend.contacts = [QUAD_BODIES["LF_SHANK"], QUAD_BODIES["RH_SHANK"]]
    assert env.is_terminal_state(0.5) == (False, 0.0)
    assert env.isTerminalState(0.5) is False


def test_non_foot_contact_is_terminal():
    env, backend, _ = make_env(cfg={"terminal_reward_coeff": -7.5})
    backend.contacts = [QUAD_BODIES["LF_SHANK"], QUAD_BODIES["base"]]
    assert env.is_terminal_state() == (True, -7.5)
    # threshold does not change the outcome
    assert env.is_terminal_state(1e6) == (True, -7.5)
    assert env.isTerminalState(0.0) is True


# ---------------------------
# set_init_constants
# ---------------------------

def test_set_init_constants_bad_length_mutates_nothing():
    env, backend, _ = make_env()
    before = [a.copy() for a in (env.gc_init, env.gv_init, env.action_mean,
                                 env.action_std, env.p_gain, env.d_gain)]
    p_before = backend.p_gain.copy()
    with pytest.raises(ValueError):
        env.set_init_constants(np.zeros(18), np.zeros(18), np.zeros(12), np.ones(12),
                               np.full(18, 80.0), np.ones(18))
    after = [env.gc_init, env.gv_init, env.action_mean, env.action_std, env.p_gain, env.d_gain]
    for b, a in zip(before, after):
        np.testing.assert_array_equal(a, b)
    np.testing.assert_array_equal(backend.p_gain, p_before)


def test_set_init_constants_applies_gains_and_pose():
    env, backend, _ = make_env()
    gc = np.asarray(STANDING_POSE, dtype=np.float64)
    gc[2] = 0.6
    env.setInitConstants(gc, np.zeros(18), np.zeros(12), np.full(12, 0.5),
                         np.full(18, 80.0), np.full(18, 1.0))
    np.testing.assert_array_equal(backend.p_gain, 80.0)
    env.reset()
    assert env.observe()[0] == pytest.approx(0.6)
    env.step(np.ones(12))
    np.testing.assert_allclose(backend.p_target[7:], 0.5)


# ---------------------------
# seeding / noise
# ---------------------------

def test_set_seed_does_not_touch_physics():
    env, _, _ = make_env()
    env.reset()
    a = env.observe().copy()
    env.set_seed(123)
    env.reset()
    np.testing.assert_array_equal(env.observe(), a)


def test_init_noise_reproducible_per_seed():
    env, _, _ = make_env(cfg={"init_noise_std": 0.05})
    env.set_seed(1)
    env.reset()
    a = env.observe().copy()
    env.setSeed(1)
    env.reset()
    np.testing.assert_array_equal(env.observe(), a)
    env.set_seed(2)
    env.reset()
    assert not np.array_equal(env.observe(), a)


def test_curriculum_update_and_close_are_noops():
    env, backend, _ = make_env()
    env.curriculum_update()
    env.curriculumUpdate()
    env.close()
    env.close()
    env.step(np.zeros(12))
    assert backend.n_integrations == 4


# ---------------------------
# visualization / lifecycle
# ---------------------------

def test_visualization_ops_without_viewer_raise():
    env, _, _ = make_env()
    for op in (env.turn_off_visualization, env.turn_on_visualization, env.stop_recording_video):
        with pytest.raises(RuntimeError, match="visualization is not enabled"):
            op()
    with pytest.raises(RuntimeError, match="visualization is not enabled"):
        env.start_recording_video("out.mp4")


def test_visualizer_launch_and_delegation():
    env, _, vis = make_env(visualize=True)
    assert vis.events[:2] == ["launch", "focus"]
    assert vis.focused == "base"
    env.turnOffVisualization()
    env.turnOnVisualization()
    env.startRecordingVideo("clip.gif")
    assert vis.recording == "clip.gif"
    env.stopRecordingVideo()
    assert vis.recording is None
    assert vis.events[-4:] == ["hibernate", "wakeup", "start_recording", "stop_recording"]


def test_shutdown_kills_viewer_exactly_once():
    env, _, vis = make_env(visualize=True)
    env.shutdown()
    env.shutdown()
    env.close()
    env.__del__()
    assert vis.kills == 1
    assert env.closed
    with pytest.raises(RuntimeError):
        env.reset()
    with pytest.raises(RuntimeError):
        env.step(np.zeros(12))
    with pytest.raises(RuntimeError):
        env.init()


def test_context_manager_shuts_down():
    events = []
    backend = FakeBackend(events=events)
    vis = FakeVisualizer(events=events)
    with WalkerEnv("unused.xml", visualizable=True, backend=backend, visualizer=vis) as env:
        env.step(np.zeros(12))
    assert vis.kills == 1
    assert env.closed


def test_get_world_returns_backend():
    env, backend, _ = make_env()
    assert env.get_world() is backend
    assert env.getWorld() is backend
