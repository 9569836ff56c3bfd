# walker_vis.py
from __future__ import annotations
import os, sys, time
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.join(current_dir, '../..')
sys.path.append(project_root)

from walker_rl.src.walker_envs.loader import load_walker_env
from walker_rl.src.walker_envs.walker_utils.saving_walker_gifs import (
    record_gif_from_env, random_policy, zero_policy,
)


def live_viewer_test(seconds: float = 10.0, policy: str = "zero", video_path: str | None = None):
    """Passive MuJoCo viewer, stepping in real time; Ctrl+C to stop."""
    with load_walker_env({"visualize": True}) as env:
        act = zero_policy(env) if policy == "zero" else random_policy(env, scale=0.5)
        if video_path:
            env.start_recording_video(video_path)
        ob = env.observe()
        n_steps = int(seconds / env.get_control_time_step())
        try:
            for i in range(n_steps):
                t0 = time.time()
                reward = env.step(act(ob))
                ob = env.observe()
                done, terminal_reward = env.is_terminal_state()
                if i % 50 == 0:
                    print(f"step {i} - height: {ob[0]:.3f}  reward: {reward:.3f}")
                if done:
                    print(f"step {i} - terminal ({terminal_reward}), resetting")
                    env.reset()
                    ob = env.observe()
                time.sleep(max(0.0, env.get_control_time_step() - (time.time() - t0)))
        except KeyboardInterrupt:
            print("stopped")
        if video_path:
            env.stop_recording_video()


def gif_test(out_path: str = "gifs/walker_random.gif"):
    env = load_walker_env()
    record_gif_from_env(env, out_path, steps=400, policy_fn=random_policy(env, scale=0.5, seed=0))
    env.shutdown()


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "live"
    if mode == "gif":
        gif_test()
    else:
        live_viewer_test(policy=mode if mode in ("zero", "random") else "zero")
