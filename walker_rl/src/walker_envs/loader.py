# walker_rl/src/walker_envs/loader.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from walker_rl.src.utils.log_msgs import info_msg
from walker_rl.src.utils.utils import load_cfg, merge_cfg
from walker_rl.src.walker_envs.walker_config import ENV_CFG
from walker_rl.src.walker_envs.walker_env import WalkerEnv

CfgLike = Union[Mapping[str, Any], str, Path, None]


def resolve_cfg(cfg: CfgLike = None, **overrides) -> Dict[str, Any]:
    """
    Turn a dict, a YAML path or None into a full env config.

    The YAML may hold the env keys at top level or under an `env:` section
    (the layout of the training configs). Unknown keys are kept.
    """
    if cfg is None:
        raw: Dict[str, Any] = {}
    elif isinstance(cfg, (str, Path)):
        raw = load_cfg(Path(cfg))
        raw = dict(raw.get("env", raw))
    else:
        raw = dict(cfg)

    unknown = sorted(set(raw) - set(ENV_CFG))
    if unknown:
        info_msg(f"Keeping non-default config keys: {unknown}", tag="loader")
    return merge_cfg(merge_cfg(ENV_CFG, raw), overrides)


def load_walker_env(cfg: CfgLike = None, **overrides) -> WalkerEnv:
    """
    Loader for the walker environment.

      load_walker_env()                                  -> bundled anymal_lite, no viewer
      load_walker_env({"control_dt": 0.02})              -> dict overlaid on ENV_CFG
      load_walker_env("walker_config.yaml", seed=3)      -> YAML, then keyword overrides

    Unknown robot names raise KeyError; a missing MJCF raises FileNotFoundError.
    """
    full = resolve_cfg(cfg, **overrides)
    return WalkerEnv.from_cfg(full)
