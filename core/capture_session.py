"""
キャプチャセッションモジュール - CvCapture用

1台のデバイスを所有し、キャプチャ毎に
反転 → キャリブレーション整合 → 歪み補正 を適用して
(フレーム, キャリブレーション) の組を生成・配信する。

処理フロー:
1. open(): デバイスオープン、トピック公開、キャリブレーション読み込み、
   property_<i>_code/value の一括設定
2. capture_once(): 1フレーム取得と補正（失敗時は状態を変更しない）
3. publish(): 直近の組を1単位として配信

単一スレッド・同期実行を前提とし、内部ロックは持たない。
"""

import time
from enum import Enum
from typing import Callable, Optional, Tuple

import cv2

from config import CaptureConfig, DEFAULT_BUFFER_SIZE, DEFAULT_CAMERA_NAME, DEFAULT_FRAME_ID, DEFAULT_TOPIC_NAME
from core.calibration_store import CalibrationStore
from core.camera_models import CalibrationRecord, Frame, encoding_for_channels
from core.capture_device import CaptureDevice, DeviceSelector, OpenCVCaptureDevice
from core.exceptions import (
    CalibrationError,
    CalibrationLoadSkipped,
    DeviceOpenError,
    PropertySetFailure,
)
from core.parameter_source import ParameterSource
from core.publisher import PublishChannel, Publisher, QueuePublisher
from core.reconciler import CalibrationReconciler
from processing.undistortion import ScaleFactors, UndistortionEngine
from utils.logger import LogOnce, get_logger

logger = get_logger(__name__)

ERR_UNDISTORT = "undistortion_failed"


class SessionState(Enum):
    """セッション状態"""
    CLOSED = "closed"
    OPEN = "open"


class CaptureSession:
    """
    1デバイス分のキャプチャとキャリブレーション補正

    Attributes:
    -----------
    config : CaptureConfig
        構築時に固定されるキャプチャ設定
    state : SessionState
        CLOSED / OPEN
    """

    def __init__(
        self,
        params: ParameterSource,
        publisher: Optional[Publisher] = None,
        topic_name: str = DEFAULT_TOPIC_NAME,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        frame_id: str = DEFAULT_FRAME_ID,
        camera_name: str = DEFAULT_CAMERA_NAME,
        device: Optional[CaptureDevice] = None,
        calibration_store: Optional[CalibrationStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        初期化

        Parameters:
        -----------
        params : ParameterSource
            capture_delay, flip_image, undistorted_* 等の設定ソース
        publisher : Publisher, optional
            配信先。Noneの場合はプロセス内キュー
        topic_name : str
            公開トピック名
        buffer_size : int
            配信バッファ深さ
        frame_id : str
            フレーム/キャリブレーションに付与する座標系ID
        camera_name : str
            キャリブレーションストアで使用するカメラ名
        device : CaptureDevice, optional
            デバイス実装。Noneの場合は OpenCV
        calibration_store : CalibrationStore, optional
            キャリブレーションストア
        clock : callable
            現在時刻（秒）を返す関数
        """
        self._params = params
        self.config = CaptureConfig.from_params(params)
        self._scale = ScaleFactors(
            fov_scale=self.config.undistorted_fov_scale,
            resolution_scale=self.config.undistorted_resolution_scale,
        )

        self._publisher = publisher or QueuePublisher()
        self.topic_name = topic_name
        self.buffer_size = buffer_size
        self.frame_id = frame_id
        self._device = device or OpenCVCaptureDevice()
        self._store = calibration_store or CalibrationStore(camera_name)
        self._clock = clock

        # 1回限りのログ状態はセッション単位
        self._once = LogOnce(logger)
        self._reconciler = CalibrationReconciler(self._once)
        self._engine = UndistortionEngine()

        self._rescale_camera_info = False
        self._channel: Optional[PublishChannel] = None
        self._frame: Optional[Frame] = None
        self._calibration: Optional[CalibrationRecord] = None
        self.state = SessionState.CLOSED

    # -------------------------- オープン/クローズ --------------------------

    def open(self, device_selector: DeviceSelector = 0) -> None:
        """
        デバイスを開く

        Parameters:
        -----------
        device_selector : int or str
            カメラ番号またはデバイスパス

        Raises:
        -------
        DeviceOpenError
            デバイスを開けない場合
        """
        kind = "device_path" if isinstance(device_selector, str) else "device_id"
        if not self._device.open(device_selector) or not self._device.is_opened():
            self._device.close()
            raise DeviceOpenError(device_selector, kind)

        try:
            self._channel = self._publisher.advertise(self.topic_name, self.buffer_size)
            self._load_camera_info()
            self._apply_property_overrides()
        except Exception:
            # オープン途中の失敗でもハンドルは解放する
            self._device.close()
            raise
        self.state = SessionState.OPEN
        logger.info(f"{kind} {device_selector} を開きました (topic={self.topic_name})")

    def open_file(self, file_path: str) -> None:
        """
        動画ファイルを開く

        デバイス制御を持たないため property_<i> の設定は行わない。

        Raises:
        -------
        DeviceOpenError
            ファイルを開けない場合
        """
        if not self._device.open_file(file_path) or not self._device.is_opened():
            self._device.close()
            raise DeviceOpenError(file_path, "file")

        try:
            self._channel = self._publisher.advertise(self.topic_name, self.buffer_size)
            self._load_camera_info()
        except Exception:
            self._device.close()
            raise
        self.state = SessionState.OPEN
        logger.info(f"file {file_path} を開きました (topic={self.topic_name})")

    def close(self) -> None:
        """デバイスを解放して CLOSED へ遷移"""
        self._device.close()
        if self.state is SessionState.OPEN:
            logger.info("キャプチャセッションを終了しました")
        self.state = SessionState.CLOSED

    def __enter__(self):
        """コンテキストマネージャエントリ"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """コンテキストマネージャ終了時にリソース解放"""
        self.close()
        return False

    def _load_camera_info(self) -> None:
        """camera_info_url の読み込みと rescale_camera_info の取得"""
        try:
            found, url = self._params.get_param("camera_info_url", str)
            if not found:
                raise CalibrationLoadSkipped(None, "未設定")
            if not self._store.validate_url(url):
                raise CalibrationLoadSkipped(url, "URL不正")
            self._store.load_camera_info(url)
        except CalibrationLoadSkipped as e:
            logger.debug(str(e))

        self._rescale_camera_info = self._params.get("rescale_camera_info", False)

    def _apply_property_overrides(self) -> None:
        """property_<i>_code / property_<i>_value を欠番まで順に設定"""
        i = 0
        while True:
            found_code, code = self._params.get_param(f"property_{i}_code", int)
            found_value, value = self._params.get_param(f"property_{i}_value", float)
            if not found_code or not found_value:
                break
            try:
                self._set_checked(code, value)
            except PropertySetFailure as e:
                logger.error(str(e))
            i += 1
        if i:
            logger.debug(f"プロパティ上書き {i}件を適用しました")

    def _set_checked(self, property_id: int, value: float) -> None:
        if not self._device.set(property_id, value):
            raise PropertySetFailure(property_id, value)

    # -------------------------- キャプチャ --------------------------

    def capture_once(self) -> bool:
        """
        1フレームを取得して補正する

        デバイスがフレームを返さない場合は False を返し、直前の
        フレーム/キャリブレーションは変更しない。

        Returns:
        --------
        bool
            フレームを生成した場合True
        """
        if self.state is not SessionState.OPEN:
            return False

        ok, image = self._device.read()
        if not ok or image is None:
            return False

        stamp = self._clock() - self.config.capture_delay
        encoding = encoding_for_channels(1 if image.ndim == 2 else image.shape[2])

        if self.config.flip_image:
            image = cv2.flip(image, self.config.image_flip_code)

        height, width = image.shape[:2]
        calibration = self._store.get_camera_info()
        self._reconciler.reconcile(calibration, width, height, self._rescale_camera_info)
        calibration.stamp = stamp
        calibration.frame_id = self.frame_id

        frame = Frame(image=image, encoding=encoding, stamp=stamp, frame_id=self.frame_id)
        distortion_model = calibration.intrinsics.distortion_model.lower()

        if self.config.undistorted_on and self._store.is_calibrated():
            frame, calibration = self._undistort(frame, calibration, distortion_model)

        self._frame = frame
        self._calibration = calibration
        return True

    def _undistort(self, frame: Frame, calibration: CalibrationRecord,
                   distortion_model: str) -> Tuple[Frame, CalibrationRecord]:
        """歪み補正。失敗時は未補正のまま通過させる"""
        try:
            return self._engine.apply(frame, calibration, self._scale, distortion_model)
        except CalibrationError as e:
            self._once.error(ERR_UNDISTORT, f"{e}。歪み補正をスキップします")
        except cv2.error as e:
            self._once.error(ERR_UNDISTORT, f"歪み補正に失敗しました: {e}")
        return frame, calibration

    def publish(self) -> None:
        """直近の capture_once で生成した組を配信する"""
        if self._channel is None or self._frame is None or self._calibration is None:
            logger.debug("配信するフレームがありません")
            return
        self._channel.publish(self._frame, self._calibration)

    def set_device_property(self, property_id: int, param_name: str) -> bool:
        """
        パラメータ値をデバイスプロパティへ設定する

        Parameters:
        -----------
        property_id : int
            cv2.CAP_PROP_* コード
        param_name : str
            値を参照するパラメータ名

        Returns:
        --------
        bool
            値が未設定、またはデバイスが受け付けた場合True
        """
        if not self._device.is_opened():
            return True
        found, value = self._params.get_param(param_name, float)
        if not found:
            return True

        logger.info(f"setting property {param_name} = {value:f}")
        try:
            self._set_checked(property_id, value)
        except PropertySetFailure as e:
            logger.error(f"{param_name}: {e}")
            return False
        return True

    # -------------------------- 参照 --------------------------

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    @property
    def frame(self) -> Optional[Frame]:
        """直近に生成したフレーム"""
        return self._frame

    @property
    def calibration(self) -> Optional[CalibrationRecord]:
        """直近に生成したキャリブレーション"""
        return self._calibration

    @property
    def channel(self) -> Optional[PublishChannel]:
        return self._channel

    @property
    def device(self) -> CaptureDevice:
        return self._device

    @property
    def calibration_store(self) -> CalibrationStore:
        return self._store

    @property
    def undistortion_engine(self) -> UndistortionEngine:
        return self._engine

    @property
    def rescale_camera_info(self) -> bool:
        return self._rescale_camera_info
