"""
カメラ関連データモデル。

内部パラメータ（K/P/D）、フレームと組で配信するキャリブレーション情報、
およびフレーム本体を保持する。行列要素の配置は ROS の CameraInfo に従う。
"""

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

BGR8 = "bgr8"
MONO8 = "mono8"

DISTORTION_MODEL_NONE = "none"
DISTORTION_MODEL_FISHEYE = "fisheye"
DISTORTION_MODEL_PLUMB_BOB = "plumb_bob"


def encoding_for_channels(channels: int) -> str:
    """チャンネル数からエンコーディングタグを決定（3ch→カラー、それ以外→モノクロ）"""
    return BGR8 if channels == 3 else MONO8


def _zeros(shape) -> np.ndarray:
    return np.zeros(shape, dtype=np.float64)


@dataclass
class CameraIntrinsics:
    """
    単一カメラの内部パラメータ。

    Attributes:
    -----------
    K : np.ndarray
        3x3 カメラ行列（fx, fy, cx, cy）
    P : np.ndarray
        3x4 投影行列
    D : np.ndarray
        歪み係数ベクトル（先頭4個を使用）
    R : np.ndarray
        3x3 平行化回転行列
    distortion_model : str
        歪みモデル名（大文字小文字を区別せず比較）
    width, height : int
        K/P が有効な画像サイズ（ピクセル）。(0, 0) は未設定
    """
    K: np.ndarray = field(default_factory=lambda: _zeros((3, 3)))
    P: np.ndarray = field(default_factory=lambda: _zeros((3, 4)))
    D: np.ndarray = field(default_factory=lambda: _zeros((0,)))
    R: np.ndarray = field(default_factory=lambda: np.eye(3))
    distortion_model: str = ""
    width: int = 0
    height: int = 0

    def __post_init__(self):
        self.K = np.array(self.K, dtype=np.float64).reshape(3, 3)
        self.P = np.array(self.P, dtype=np.float64).reshape(3, 4)
        self.D = np.array(self.D, dtype=np.float64).reshape(-1)
        self.R = np.array(self.R, dtype=np.float64).reshape(3, 3)
        self.width = int(self.width)
        self.height = int(self.height)

    @classmethod
    def from_camera_matrix(cls, camera_matrix, distortion_coeffs, width: int, height: int,
                           distortion_model: str = DISTORTION_MODEL_PLUMB_BOB) -> 'CameraIntrinsics':
        """K と歪み係数から生成（P = [K | 0]、R = 単位行列）"""
        K = np.array(camera_matrix, dtype=np.float64).reshape(3, 3)
        P = np.hstack([K, np.zeros((3, 1))])
        return cls(K=K, P=P, D=distortion_coeffs, R=np.eye(3),
                   distortion_model=distortion_model, width=width, height=height)

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height)"""
        return self.width, self.height

    @property
    def is_calibrated(self) -> bool:
        """焦点距離が設定されていれば校正済み"""
        return bool(self.K[0, 0] != 0.0)

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    def copy(self) -> 'CameraIntrinsics':
        return CameraIntrinsics(
            K=self.K.copy(),
            P=self.P.copy(),
            D=self.D.copy(),
            R=self.R.copy(),
            distortion_model=self.distortion_model,
            width=self.width,
            height=self.height,
        )

    def to_dict(self) -> dict:
        return {
            "image_width": self.width,
            "image_height": self.height,
            "camera_matrix": {"rows": 3, "cols": 3, "data": self.K.reshape(-1).tolist()},
            "distortion_model": self.distortion_model,
            "distortion_coefficients": {"rows": 1, "cols": int(self.D.size), "data": self.D.tolist()},
            "rectification_matrix": {"rows": 3, "cols": 3, "data": self.R.reshape(-1).tolist()},
            "projection_matrix": {"rows": 3, "cols": 4, "data": self.P.reshape(-1).tolist()},
        }


@dataclass
class CalibrationRecord:
    """
    フレームと組で配信するキャリブレーション情報。

    デバイスオープン時に一度読み込まれ、キャプチャ毎にタイムスタンプと
    frame_id が更新される。解像度不一致時は Reconciler が in-place で書き換える。
    """
    intrinsics: CameraIntrinsics = field(default_factory=CameraIntrinsics)
    stamp: float = 0.0
    frame_id: str = ""
    camera_name: str = ""

    @property
    def width(self) -> int:
        return self.intrinsics.width

    @property
    def height(self) -> int:
        return self.intrinsics.height

    @property
    def is_calibrated(self) -> bool:
        return self.intrinsics.is_calibrated

    def copy(self) -> 'CalibrationRecord':
        return CalibrationRecord(
            intrinsics=self.intrinsics.copy(),
            stamp=self.stamp,
            frame_id=self.frame_id,
            camera_name=self.camera_name,
        )


@dataclass
class Frame:
    """キャプチャ済みフレーム。"""
    image: np.ndarray
    encoding: str = BGR8
    stamp: float = 0.0
    frame_id: str = ""

    @property
    def channels(self) -> int:
        return 1 if self.image.ndim == 2 else int(self.image.shape[2])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])
