"""
カメラドライバモジュール

パラメータに従ってデバイスを選択・オープンし、標準プロパティを設定した上で
一定周期でキャプチャと配信を繰り返す。
"""

import threading
import time
from typing import Callable, Optional

import cv2

from config import DriverConfig
from core.calibration_store import CalibrationStore
from core.capture_device import CaptureDevice
from core.capture_session import CaptureSession
from core.exceptions import PropertySetFailure
from core.parameter_source import ParameterSource
from core.publisher import Publisher
from utils.logger import get_logger

logger = get_logger(__name__)

# (プロパティコード, パラメータ名)
STANDARD_PROPERTIES = (
    (cv2.CAP_PROP_FRAME_WIDTH, "image_width"),
    (cv2.CAP_PROP_FRAME_HEIGHT, "image_height"),
    (cv2.CAP_PROP_FPS, "cv_cap_prop_fps"),
    (cv2.CAP_PROP_POS_MSEC, "cv_cap_prop_pos_msec"),
    (cv2.CAP_PROP_POS_AVI_RATIO, "cv_cap_prop_pos_avi_ratio"),
    (cv2.CAP_PROP_BRIGHTNESS, "cv_cap_prop_brightness"),
    (cv2.CAP_PROP_CONTRAST, "cv_cap_prop_contrast"),
    (cv2.CAP_PROP_SATURATION, "cv_cap_prop_saturation"),
    (cv2.CAP_PROP_HUE, "cv_cap_prop_hue"),
    (cv2.CAP_PROP_GAIN, "cv_cap_prop_gain"),
    (cv2.CAP_PROP_EXPOSURE, "cv_cap_prop_exposure"),
)


class CameraDriver:
    """
    CaptureSession を周期駆動するドライバ

    オープン優先順位: file > device_path > device_id
    """

    def __init__(
        self,
        params: ParameterSource,
        publisher: Optional[Publisher] = None,
        device: Optional[CaptureDevice] = None,
        calibration_store: Optional[CalibrationStore] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._params = params
        self.config = DriverConfig.from_params(params)
        self._sleep = sleep
        self.session = CaptureSession(
            params,
            publisher=publisher,
            topic_name=self.config.topic_name,
            buffer_size=self.config.buffer_size,
            frame_id=self.config.frame_id,
            camera_name=self.config.camera_name,
            device=device,
            calibration_store=calibration_store,
            clock=clock,
        )

    def setup(self) -> None:
        """
        デバイスを開いて標準プロパティを設定する

        Raises:
        -------
        DeviceOpenError
            デバイス/ファイルを開けない場合
        """
        if self.config.file:
            self.session.open_file(self.config.file)
            # 動画ファイルはデバイス制御を持たない
            return

        if self.config.device_path:
            self.session.open(self.config.device_path)
        else:
            self.session.open(self.config.device_id)

        self._set_fourcc()
        for property_id, param_name in STANDARD_PROPERTIES:
            self.session.set_device_property(property_id, param_name)

    def _set_fourcc(self) -> None:
        found, fourcc = self._params.get_param("cv_cap_prop_fourcc", str)
        if not found:
            return
        if len(fourcc) != 4:
            logger.warning(f"cv_cap_prop_fourcc は4文字である必要があります: {fourcc!r}")
            return
        code = cv2.VideoWriter_fourcc(*fourcc)
        logger.info(f"setting property cv_cap_prop_fourcc = {fourcc}")
        try:
            if not self.session.device.set(cv2.CAP_PROP_FOURCC, code):
                raise PropertySetFailure(cv2.CAP_PROP_FOURCC, code)
        except PropertySetFailure as e:
            logger.error(f"cv_cap_prop_fourcc: {e}")

    def proceed(self) -> bool:
        """1サイクル: キャプチャできた場合のみ配信する"""
        if self.session.capture_once():
            self.session.publish()
            return True
        return False

    def run(self, max_frames: Optional[int] = None,
            stop_event: Optional[threading.Event] = None) -> int:
        """
        rate [Hz] でキャプチャループを実行する

        Parameters:
        -----------
        max_frames : int, optional
            配信フレーム数の上限。Noneの場合は停止まで継続
        stop_event : threading.Event, optional
            セットされるとループを終了する

        Returns:
        --------
        int
            配信したフレーム数
        """
        period = 1.0 / self.config.rate
        published = 0
        next_tick = time.monotonic()

        while self.session.is_open:
            if stop_event is not None and stop_event.is_set():
                break
            if max_frames is not None and published >= max_frames:
                break

            if self.proceed():
                published += 1
            elif self.config.file:
                logger.info(f"動画ファイルの終端に達しました: {self.config.file}")
                break

            next_tick += period
            remaining = next_tick - time.monotonic()
            if remaining > 0:
                self._sleep(remaining)
            else:
                # 周期に追いつけない場合は基準時刻をリセット
                next_tick = time.monotonic()

        logger.info(f"キャプチャループ終了: {published}フレーム配信")
        return published

    def shutdown(self) -> None:
        self.session.close()

    def __enter__(self):
        """コンテキストマネージャエントリ"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """コンテキストマネージャ終了時にリソース解放"""
        self.shutdown()
        return False
