#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations
import os, sys, json, time
from pathlib import Path
from typing import Any, Dict

import numpy as np
import torch
import yaml

from stable_baselines3 import PPO
from stable_baselines3.common.callbacks import BaseCallback, CheckpointCallback, CallbackList
from stable_baselines3.common.evaluation import evaluate_policy
from dm_control.rl.control import PhysicsError

# ========= Project paths =========
current_dir = Path(__file__).parent.resolve()
project_root = Path(os.path.abspath(os.path.join(current_dir, '../../../')))
sys.path.append(str(project_root))

from walker_rl.src.utils.log_msgs import color_text, error_msg, info_msg, success_msg
from walker_rl.src.utils.utils import run_name, seed_everything
from walker_rl.src.walker_envs.walker_gym_wrapper import make_vec_walker_env


# =========================
# YAML + ENV loader (macro-driven)
# =========================
def load_from_macro_env_and_yaml() -> Dict[str, Any]:
    CFG_PATH = os.environ.get("CFG_PATH") or str(current_dir / "walker_config.yaml")
    with open(CFG_PATH, "r") as f:
        cfg = yaml.safe_load(f) or {}

    seed = int(os.environ.get("SEED", cfg.get("env", {}).get("seed", 0)))
    results_root = Path(
        os.environ.get("RESULTS_ROOT")
        or cfg.get("results_root")
        or (project_root / "results" / "walker_ppo")
    )
    info_msg(f"cfg={color_text(CFG_PATH)} seed={seed} results_root={results_root}", tag="cfg")
    return {"cfg": cfg, "seed": seed, "results_root": results_root, "cfg_path": CFG_PATH}


# =========================
# PPO factory (simple)
# =========================
def make_ppo(env, ppo_cfg: Dict[str, Any], *, tensorboard_log: Path | None, seed: int, device: str = "cpu"):

    if device == "auto":
        device = "cuda" if torch.cuda.is_available() else "cpu"

    n_envs = getattr(env, "num_envs", 1)
    per_env_steps = max(1, int(ppo_cfg.get("rollout_steps", 2048)) // int(n_envs))
    model = PPO(
        "MlpPolicy",
        env,
        n_steps=per_env_steps,
        batch_size=int(ppo_cfg.get("batch_size", 64)),
        n_epochs=int(ppo_cfg.get("n_epochs", 10)),
        learning_rate=float(ppo_cfg.get("learning_rate", 3e-4)),
        gamma=float(ppo_cfg.get("gamma", 0.99)),
        gae_lambda=float(ppo_cfg.get("gae_lambda", 0.95)),
        clip_range=float(ppo_cfg.get("clip_range", 0.2)),
        policy_kwargs=dict(net_arch=list(ppo_cfg.get("net_arch", [128, 128]))),
        seed=seed,
        device=device,
        verbose=1,
        tensorboard_log=str(tensorboard_log) if tensorboard_log else None,
    )
    return model


# =========================
# Periodic eval callback
# =========================
class WalkerEvalCallback(BaseCallback):
    """Deterministic evaluation every eval_freq steps; keeps the best model."""

    def __init__(self, *, eval_env, eval_freq: int, n_episodes: int, best_path: Path):
        super().__init__(verbose=0)
        self.eval_env = eval_env
        self.eval_freq = int(eval_freq)
        self.n_episodes = int(n_episodes)
        self.best_path = Path(best_path)
        self.best_mean = -np.inf
        self.best_step = -1

    def _on_step(self) -> bool:
        # eval_freq counts callback calls (one per vec-env step), like CheckpointCallback
        if self.eval_freq <= 0 or (self.n_calls % self.eval_freq) != 0:
            return True
        t0 = time.time()
        ep_rewards, ep_lengths = evaluate_policy(
            self.model, self.eval_env,
            n_eval_episodes=self.n_episodes,
            deterministic=True,
            return_episode_rewards=True,
            warn=False,
        )
        mean_r = float(np.mean(ep_rewards)) if ep_rewards else 0.0
        self.logger.record("eval/mean_reward", mean_r)
        self.logger.record("eval/std_reward", float(np.std(ep_rewards)) if ep_rewards else 0.0)
        self.logger.record("eval/mean_ep_length", float(np.mean(ep_lengths)) if ep_lengths else 0.0)
        self.logger.record("eval/seconds", float(time.time() - t0))
        if mean_r > self.best_mean:
            self.best_mean = mean_r
            self.best_step = int(self.num_timesteps)
            self.model.save(str(self.best_path))
        return True


# =========================
# Main (macro-driven; no argparse)
# =========================
def main():
    bits = load_from_macro_env_and_yaml()
    cfg, seed, results_root = bits["cfg"], bits["seed"], bits["results_root"]
    env_cfg = dict(cfg.get("env") or {})
    ppo_cfg = dict(cfg.get("ppo") or {})
    eval_cfg = dict(cfg.get("eval") or {})

    seed_everything(seed)

    name = run_name(env_cfg.get("robot", "anymal_lite"), seed,
                    env_cfg.get("control_dt", 0.01), env_cfg.get("action_std", 0.3))
    run_dir = results_root / name
    tb_dir, ckpt_dir, models_dir = run_dir / "tb", run_dir / "checkpoints", run_dir / "models"
    for d in (tb_dir, ckpt_dir, models_dir):
        d.mkdir(parents=True, exist_ok=True)

    # --- envs ---
    env = make_vec_walker_env(int(cfg.get("n_envs", 1)), env_cfg, base_seed=seed)
    eval_env = make_vec_walker_env(
        int(eval_cfg.get("n_envs", 1)), env_cfg, base_seed=int(eval_cfg.get("base_seed", 7777))
    )

    # --- PPO ---
    total_steps = int(ppo_cfg.get("total_steps", 1_000_000))
    model = make_ppo(env, ppo_cfg, tensorboard_log=tb_dir, seed=seed, device="auto")

    eval_freq = max(1, int(ppo_cfg.get("eval_freq", 100_000)) // env.num_envs)
    ckpt_cb = CheckpointCallback(
        save_freq=eval_freq,
        save_path=str(ckpt_dir),
        name_prefix=f"ckpt_{name}",
        save_replay_buffer=False,
        save_vecnormalize=False,
    )
    eval_cb = WalkerEvalCallback(
        eval_env=eval_env,
        eval_freq=eval_freq,
        n_episodes=int(eval_cfg.get("n_episodes", 8)),
        best_path=models_dir / "best_model",
    )

    try:
        model.learn(
            total_timesteps=total_steps,
            callback=CallbackList([ckpt_cb, eval_cb]),
            tb_log_name=f"seed_{seed}",
            progress_bar=False,
        )
    except PhysicsError:
        error_msg(f"Simulation diverged at step {model.num_timesteps}; lower simulation_dt or action_std.", tag="ppo")
        raise

    # --- save + meta ---
    final_path = models_dir / f"walker_ppo_final_{total_steps // 1000}k_seed{seed}.zip"
    model.save(str(final_path))

    mean_r, std_r = evaluate_policy(model, eval_env, n_eval_episodes=int(eval_cfg.get("n_episodes", 8)),
                                    deterministic=True, warn=False)
    with open(run_dir / "run_meta.json", "w") as f:
        json.dump({
            "cfg_path": bits["cfg_path"],
            "env": env_cfg,
            "ppo": ppo_cfg,
            "seed": seed,
            "total_steps": total_steps,
            "best_eval_mean": eval_cb.best_mean,
            "best_eval_step": eval_cb.best_step,
            "final_eval_mean": float(mean_r),
            "final_eval_std": float(std_r),
        }, f, indent=2)

    success_msg(f"[seed {seed}] Saved: {final_path}  final eval {mean_r:.2f} +/- {std_r:.2f}", tag="ppo")
    env.close()
    eval_env.close()


if __name__ == "__main__":
    main()
