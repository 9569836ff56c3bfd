import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import numpy as np
import yaml

def load_cfg(yaml_path: Path) -> Dict[str, Any]:
    with open(yaml_path, "r") as f:
        return yaml.safe_load(f) or {}

def merge_cfg(base: Mapping[str, Any], override: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Shallow overlay of `override` on a copy of `base`; unknown keys are kept."""
    out = dict(base)
    for k, v in (override or {}).items():
        out[k] = v
    return out

# ------------------------
# naming experiment runs
# ------------------------
def sanitize(x):
    s = str(x).replace(".", "p").replace("-", "m")
    return re.sub(r"[^A-Za-z0-9_]+", "", s)

def run_name(robot: str, seed: int, control_dt: float, action_std: float) -> str:
    parts = [sanitize(Path(str(robot)).stem), f"seed{sanitize(seed)}",
             f"cdt{sanitize(control_dt)}", f"astd{sanitize(action_std)}"]
    return "__".join(parts)

# ----------------------
# Utilities / Seeding
# ----------------------
def seed_everything(seed: int) -> None:
    """
    Seeding for training/eval scripts (Python, NumPy, Torch).
    Environments own their generators; this only covers the global ones.
    """
    import random
    os.environ["PYTHONHASHSEED"] = str(seed)
    os.environ.setdefault("OMP_NUM_THREADS", "1")
    os.environ.setdefault("MKL_NUM_THREADS", "1")

    np.random.seed(seed)
    random.seed(seed)
    try:
        import torch
    except ImportError:
        return
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
