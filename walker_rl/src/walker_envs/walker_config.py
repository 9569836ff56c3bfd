from pathlib import Path

_ASSETS_DIR = Path(__file__).resolve().parent / "env_assets"

# robot name -> MJCF description
ROBOTS = {
    "anymal_lite": _ASSETS_DIR / "anymal_lite" / "anymal_lite.xml",
}

FOOT_BODIES = ("LF_SHANK", "RF_SHANK", "LH_SHANK", "RH_SHANK")

# standing pose: base xyz, base quat (wxyz), then HAA/HFE/KFE for LF, RF, LH, RH
STANDING_POSE = (
    0.0, 0.0, 0.50,
    1.0, 0.0, 0.0, 0.0,
    0.03, 0.4, -0.8,
    -0.03, 0.4, -0.8,
    0.03, -0.4, 0.8,
    -0.03, -0.4, 0.8,
)

ENV_CFG = dict(
    robot="anymal_lite",          # registry name or path to an MJCF file
    visualize=False,
    simulation_dt=0.0025,
    control_dt=0.01,
    init_pose=STANDING_POSE,
    p_gain=50.0,                  # joint DOFs only, base stays free-floating
    d_gain=0.2,
    action_std=0.3,               # pTarget = action * action_std + action_mean
    foot_bodies=FOOT_BODIES,
    terminal_reward_coeff=-10.0,
    seed=0,
    init_noise_std=0.0,           # joint-angle noise on reset, off by default
    # gym adapter
    max_episode_steps=1000,
    clip_actions=1.0,
    # visualization / recording
    video_fps=30,
    video_size=(480, 640),        # (height, width)
)

REWARD_CFG = dict(
    torque_coeff=-4e-5,
    forward_vel_coeff=0.3,
    forward_vel_cap=4.0,
)


def available_robots():
    return sorted(ROBOTS)


def resolve_robot(robot) -> Path:
    """Registry name ('anymal_lite') or path to an MJCF file -> MJCF path."""
    if str(robot) in ROBOTS:
        return ROBOTS[str(robot)]
    path = Path(robot).expanduser()
    if path.suffix.lower() == ".xml":
        return path
    raise KeyError(f"Unknown robot {robot!r}. Available: {available_robots()} or a path to an .xml file.")
