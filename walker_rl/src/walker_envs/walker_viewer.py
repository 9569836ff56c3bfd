# walker_viewer.py
from __future__ import annotations
import abc
import contextlib
import os
from pathlib import Path
from typing import Iterator, List, Optional

import cv2
import imageio
import numpy as np
import mujoco
import mujoco.viewer

from walker_rl.src.utils.log_msgs import info_msg, warn_msg


class WalkerVisualizer(abc.ABC):
    """Viewer/recorder the walker controller can attach to its world."""

    @abc.abstractmethod
    def launch(self) -> None: ...

    @abc.abstractmethod
    def focus_on(self, body_name: str) -> None: ...

    @abc.abstractmethod
    def hibernate(self) -> None: ...

    @abc.abstractmethod
    def wakeup(self) -> None: ...

    @abc.abstractmethod
    def start_recording_video(self, path: str) -> None: ...

    @abc.abstractmethod
    def stop_recording_video(self) -> None: ...

    @abc.abstractmethod
    def lock(self) -> contextlib.AbstractContextManager:
        """World-mutation lock; held around exactly one integration call."""

    @abc.abstractmethod
    def sync(self) -> None:
        """Called once after every control step."""

    @abc.abstractmethod
    def kill(self) -> None: ...


# ---------- frame recording ----------
def annotate_with_time(frame: np.ndarray, sim_time: float) -> np.ndarray:
    fb = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
    text = f"t = {sim_time:.2f} s"
    h, w, _ = fb.shape
    cv2.putText(fb, text, (10, h - 20), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2, cv2.LINE_AA)
    return cv2.cvtColor(fb, cv2.COLOR_BGR2RGB)


def quantize_duration(x: float, q: float) -> float:
    # round to nearest multiple of q, and clamp to at least q
    return max(q, round(x / q) * q)


class FrameRecorder:
    """
    Collects frames spaced by simulated time and writes them with imageio.

    GIFs get per-frame durations (ms) from sim time, quantized to the frame
    period so playback speed matches the simulation. Other extensions
    (e.g. .mp4, needs imageio-ffmpeg) are written at a fixed fps.
    """

    def __init__(self, out_path: str | Path, *, fps: int = 30, slowmo: float = 1.0, stamp_time: bool = True):
        self.out_path = Path(out_path)
        self.fps = max(1, int(fps))
        self.slowmo = max(1.0, float(slowmo))
        self.stamp_time = stamp_time
        self.q = 1.0 / self.fps               # frame period in seconds
        self.min_keep_dt = self.q / self.slowmo
        self.frames: List[np.ndarray] = []
        self.durations: List[float] = []
        self._last_time: Optional[float] = None

    def should_capture(self, sim_time: float) -> bool:
        return self._last_time is None or (sim_time - self._last_time) >= self.min_keep_dt - 1e-12

    def add(self, frame: np.ndarray, sim_time: float) -> None:
        if self.stamp_time:
            frame = annotate_with_time(frame, sim_time)
        if self._last_time is None:
            self.durations.append(self.q)
        else:
            self.durations.append(quantize_duration((sim_time - self._last_time) * self.slowmo, self.q))
        self.frames.append(frame)
        self._last_time = float(sim_time)

    def save(self) -> Path:
        if len(self.frames) <= 1:
            raise RuntimeError("Not enough frames captured; record for longer or lower the fps.")
        dirn = os.path.dirname(self.out_path)
        if dirn:
            os.makedirs(dirn, exist_ok=True)
        if self.out_path.suffix.lower() == ".gif":
            imageio.mimsave(self.out_path, self.frames, duration=[d * 1000.0 for d in self.durations], loop=0)
        else:
            imageio.mimsave(self.out_path, self.frames, fps=self.fps)
        return self.out_path


# ---------- MuJoCo passive viewer ----------
class MujocoWalkerViewer(WalkerVisualizer):
    """
    Adapter over mujoco.viewer.launch_passive for a MujocoWalkerBackend.

    The viewer renders from its own thread; its lock() is the world-mutation
    lock. Video frames are rendered offscreen with mujoco.Renderer from the
    named camera (free camera if the model has none).
    """

    def __init__(self, backend, *, video_fps: int = 30, video_size=(480, 640), camera: str = "track"):
        self._backend = backend
        self._model = backend.physics.model.ptr
        self._data = backend.physics.data.ptr
        self.video_fps = int(video_fps)
        self.video_size = tuple(video_size)
        cam_id = mujoco.mj_name2id(self._model, mujoco.mjtObj.mjOBJ_CAMERA, camera)
        self._camera = camera if cam_id >= 0 else -1

        self._handle = None
        self._awake = True
        self._recorder: Optional[FrameRecorder] = None
        self._renderer: Optional[mujoco.Renderer] = None

    def launch(self) -> None:
        info_msg("Starting visualization thread...", tag="viewer")
        self._handle = mujoco.viewer.launch_passive(self._model, self._data)

    def focus_on(self, body_name: str) -> None:
        bid = mujoco.mj_name2id(self._model, mujoco.mjtObj.mjOBJ_BODY, body_name)
        if bid < 0:
            raise ValueError(f"Cannot focus on unknown body {body_name!r}.")
        with self.lock():
            self._handle.cam.type = mujoco.mjtCamera.mjCAMERA_TRACKING
            self._handle.cam.trackbodyid = bid
            self._handle.cam.distance = 3.0

    def hibernate(self) -> None:
        self._awake = False

    def wakeup(self) -> None:
        self._awake = True

    @contextlib.contextmanager
    def lock(self) -> Iterator[None]:
        if self._handle is None:
            yield
            return
        with self._handle.lock():
            yield

    def sync(self) -> None:
        if self._handle is not None and self._awake and self._handle.is_running():
            self._handle.sync()
        if self._recorder is not None and self._recorder.should_capture(self._data.time):
            h, w = self.video_size
            if self._renderer is None:
                self._renderer = mujoco.Renderer(self._model, height=h, width=w)
            self._renderer.update_scene(self._data, camera=self._camera)
            self._recorder.add(self._renderer.render(), float(self._data.time))

    def start_recording_video(self, path: str) -> None:
        if self._recorder is not None:
            warn_msg(f"Already recording to {self._recorder.out_path}; restarting.", tag="viewer")
        self._recorder = FrameRecorder(path, fps=self.video_fps)
        info_msg(f"Recording video to {path}", tag="viewer")

    def stop_recording_video(self) -> None:
        if self._recorder is None:
            warn_msg("stop_recording_video() called while not recording.", tag="viewer")
            return
        recorder, self._recorder = self._recorder, None
        out = recorder.save()
        info_msg(f"Saved video: {out}  frames={len(recorder.frames)}", tag="viewer")

    def kill(self) -> None:
        try:
            if self._recorder is not None:
                if len(self._recorder.frames) <= 1:
                    warn_msg(f"Discarding {self._recorder.out_path}: too few frames recorded.", tag="viewer")
                    self._recorder = None
                else:
                    self.stop_recording_video()
        finally:
            self._recorder = None
            if self._renderer is not None:
                self._renderer.close()
                self._renderer = None
            if self._handle is not None:
                self._handle.close()
                self._handle = None
