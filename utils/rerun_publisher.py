"""
Rerun streaming publisher for captured frames and their calibration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from core.camera_models import BGR8, CalibrationRecord, Frame
from core.publisher import PublishChannel, Publisher
from utils.logger import get_logger

logger = get_logger(__name__)


def _to_rgb(frame: Frame) -> np.ndarray:
    if frame.encoding == BGR8 and frame.channels == 3:
        return cv2.cvtColor(frame.image, cv2.COLOR_BGR2RGB)
    return frame.image


class RerunChannel(PublishChannel):
    """
    Log one (frame, calibration) pair per publish under ``<topic>/``.
    """

    def __init__(self, rr, topic_name: str, buffer_depth: int, timeline_name: str = "frame") -> None:
        super().__init__(topic_name, buffer_depth)
        self._rr = rr
        self.timeline_name = timeline_name
        self._root = "/" + topic_name.strip("/")

    def _set_frame_time(self, frame: Frame) -> None:
        if self._rr is None:
            return
        self._rr.set_time(self.timeline_name, sequence=self.published_count)
        self._rr.set_time("capture_time", timestamp=float(frame.stamp))

    def publish(self, frame: Frame, calibration: CalibrationRecord) -> None:
        self.published_count += 1
        if self._rr is None:
            return

        self._set_frame_time(frame)

        intrinsics = calibration.intrinsics
        if intrinsics.is_calibrated:
            self._rr.log(
                f"{self._root}",
                self._rr.Pinhole(
                    image_from_camera=intrinsics.K.astype(np.float32),
                    resolution=[intrinsics.width, intrinsics.height],
                ),
            )
        self._rr.log(f"{self._root}/image", self._rr.Image(_to_rgb(frame)))


class RerunPublisher(Publisher):
    """
    Thin wrapper around rerun SDK with optional no-op fallback.
    """

    def __init__(
        self,
        app_id: str = "cvcapture",
        spawn: bool = False,
        save_path: Optional[str] = None,
        timeline_name: str = "frame",
    ) -> None:
        self.timeline_name = timeline_name
        self._rr = None

        try:
            import rerun as rr  # type: ignore
            self._rr = rr
        except ImportError:
            logger.warning("rerun が見つかりません。Rerun配信は無効化されます。`pip install rerun-sdk` を実行してください。")
            return

        self._rr.init(app_id, spawn=spawn)
        if save_path:
            save_target = Path(save_path)
            save_target.parent.mkdir(parents=True, exist_ok=True)
            self._rr.save(str(save_target))
            logger.info(f"Rerunログ保存先: {save_target}")

    @property
    def enabled(self) -> bool:
        return self._rr is not None

    def advertise(self, topic_name: str, buffer_depth: int) -> RerunChannel:
        return RerunChannel(self._rr, topic_name, buffer_depth, timeline_name=self.timeline_name)
