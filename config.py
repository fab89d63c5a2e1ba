"""
CvCapture - Configuration
カメラキャプチャ・キャリブレーション補正パイプライン設定

dataclassベースの構造化された設定とデフォルト定数を併存。
CaptureSession は CaptureConfig、CameraDriver は DriverConfig を使用し、
いずれも ParameterSource から from_params() で生成する。
"""

from dataclasses import dataclass, asdict
from typing import Optional


# =============================================================================
# デフォルト定数
# =============================================================================

# === キャプチャ ===
DEFAULT_CAPTURE_DELAY = 0.0        # 撮像からタイムスタンプまでの遅延（秒）
DEFAULT_IMAGE_FLIP_CODE = 0        # cv2.flip の軸コード（0=上下, 1=左右, -1=両方）

# === 歪み補正 ===
DEFAULT_UNDISTORTED_FOV_SCALE = 1.0
DEFAULT_UNDISTORTED_RESOLUTION_SCALE = 1.0

# === ドライバ ===
DEFAULT_RATE = 30.0                # キャプチャループ周期（Hz）
DEFAULT_DEVICE_ID = 0
DEFAULT_TOPIC_NAME = "image_raw"
DEFAULT_BUFFER_SIZE = 1
DEFAULT_FRAME_ID = "camera"
DEFAULT_CAMERA_NAME = "camera"


@dataclass
class CaptureConfig:
    """
    キャプチャセッション設定

    セッション構築時に一度だけ読み込まれ、以降のサイクルでは固定。
    """
    capture_delay: float = DEFAULT_CAPTURE_DELAY
    flip_image: bool = False
    image_flip_code: int = DEFAULT_IMAGE_FLIP_CODE
    undistorted_on: bool = False
    undistorted_fov_scale: float = DEFAULT_UNDISTORTED_FOV_SCALE
    undistorted_resolution_scale: float = DEFAULT_UNDISTORTED_RESOLUTION_SCALE

    def __post_init__(self):
        if self.undistorted_fov_scale <= 0:
            raise ValueError(f"undistorted_fov_scale は正の値である必要があります: {self.undistorted_fov_scale}")
        if self.undistorted_resolution_scale <= 0:
            raise ValueError(
                f"undistorted_resolution_scale は正の値である必要があります: {self.undistorted_resolution_scale}"
            )

    @classmethod
    def from_params(cls, params) -> 'CaptureConfig':
        """
        ParameterSource から CaptureConfig を生成

        Parameters:
        -----------
        params : ParameterSource
            設定ソース

        Returns:
        --------
        CaptureConfig
        """
        config = cls()
        config.capture_delay = params.get('capture_delay', config.capture_delay)
        config.flip_image = params.get('flip_image', config.flip_image)
        config.image_flip_code = params.get('image_flip_code', config.image_flip_code)
        config.undistorted_on = params.get('undistorted_on', config.undistorted_on)
        config.undistorted_fov_scale = params.get('undistorted_fov_scale', config.undistorted_fov_scale)
        config.undistorted_resolution_scale = params.get(
            'undistorted_resolution_scale', config.undistorted_resolution_scale
        )
        # dataclass の検証を再実行
        config.__post_init__()
        return config

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DriverConfig:
    """
    ドライバ設定（デバイス選択・トピック・ループ周期）
    """
    device_id: int = DEFAULT_DEVICE_ID
    device_path: Optional[str] = None
    file: Optional[str] = None
    rate: float = DEFAULT_RATE
    topic_name: str = DEFAULT_TOPIC_NAME
    buffer_size: int = DEFAULT_BUFFER_SIZE
    frame_id: str = DEFAULT_FRAME_ID
    camera_name: str = DEFAULT_CAMERA_NAME

    @classmethod
    def from_params(cls, params) -> 'DriverConfig':
        config = cls()
        config.device_id = params.get('device_id', config.device_id)
        config.device_path = params.get('device_path', '') or None
        config.file = params.get('file', '') or None
        config.rate = params.get('rate', config.rate)
        config.topic_name = params.get('topic_name', config.topic_name)
        config.buffer_size = params.get('buffer_size', config.buffer_size)
        config.frame_id = params.get('frame_id', config.frame_id)
        config.camera_name = params.get('camera_name', config.camera_name)
        if config.rate <= 0:
            raise ValueError(f"rate は正の値である必要があります: {config.rate}")
        return config
