"""
歪み補正モジュール。

- FOV/解像度スケールから補正後の内部パラメータを導出
- 画素リマップテーブルの生成とキャッシュ
- リマップによる歪み除去

リマップテーブルの生成は画素毎の逆歪み計算を伴い高コストなため、
(元K, 歪み係数, 目標K, 目標サイズ, 歪みモデル) をキーにキャッシュし、
キーが変化した場合のみ再生成する。
"""

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Tuple

import cv2
import numpy as np

from core.camera_models import (
    DISTORTION_MODEL_FISHEYE,
    DISTORTION_MODEL_NONE,
    CalibrationRecord,
    CameraIntrinsics,
    Frame,
)
from core.exceptions import InsufficientDistortionError
from utils.logger import get_logger

logger = get_logger(__name__)

# 逆歪み計算に使用する係数数
DISTORTION_COEFF_COUNT = 4
# 補正後に配信する歪み係数の数
OUTPUT_DISTORTION_COEFF_COUNT = 5


@dataclass(frozen=True)
class ScaleFactors:
    """
    補正後画像のスケール

    Attributes:
    -----------
    fov_scale : float
        元の視野角をどれだけ残すか（大きいほど広角、焦点距離が短くなる）
    resolution_scale : float
        出力画素密度（0.5 なら縦横半分）
    """
    fov_scale: float = 1.0
    resolution_scale: float = 1.0

    def __post_init__(self):
        if not self.fov_scale > 0:
            raise ValueError(f"fov_scale は正の値である必要があります: {self.fov_scale}")
        if not self.resolution_scale > 0:
            raise ValueError(f"resolution_scale は正の値である必要があります: {self.resolution_scale}")

    @property
    def focal_scale(self) -> float:
        return self.resolution_scale / self.fov_scale


class RemapCacheKey(NamedTuple):
    """リマップテーブルの有効範囲を決めるキー"""
    source_k: Tuple[float, ...]
    distortion: Tuple[float, ...]
    target_k: Tuple[float, ...]
    target_size: Tuple[int, int]
    distortion_model: str


@dataclass
class GeometricRemapTable:
    """cv2.remap 用の座標マップ（CV_16SC2 固定小数点 + 補間テーブル）"""
    map1: np.ndarray
    map2: np.ndarray
    key: RemapCacheKey

    @property
    def size(self) -> Tuple[int, int]:
        return self.key.target_size


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_target_size(width: int, height: int, resolution_scale: float) -> Tuple[int, int]:
    """出力サイズ (width, height) を算出"""
    return _round_half_up(width * resolution_scale), _round_half_up(height * resolution_scale)


def derive_target_intrinsics(intrinsics: CameraIntrinsics, scale: ScaleFactors) -> CameraIntrinsics:
    """
    補正後の内部パラメータを導出する（入力は変更しない）

    焦点距離 (K[0,0], K[1,1], P[0,0], P[1,1]) は resolution_scale / fov_scale 倍、
    主点 (K[0,2], K[1,2], P[0,2], P[1,2]) は resolution_scale 倍。
    """
    target = intrinsics.copy()
    focal = scale.focal_scale
    res = scale.resolution_scale

    target.K[0, 0] *= focal
    target.K[1, 1] *= focal
    target.P[0, 0] *= focal
    target.P[1, 1] *= focal

    target.K[0, 2] *= res
    target.K[1, 2] *= res
    target.P[0, 2] *= res
    target.P[1, 2] *= res
    return target


class UndistortionEngine:
    """
    歪み補正エンジン

    リマップテーブルと作業バッファを専有し、他と共有しない。
    テーブルは使用直前にキー照合し、不一致時のみ再生成する。
    """

    def __init__(self):
        self._table: Optional[GeometricRemapTable] = None
        self._buffer: Optional[np.ndarray] = None
        self.build_count = 0

    @property
    def table(self) -> Optional[GeometricRemapTable]:
        return self._table

    def apply(self, frame: Frame, calibration: CalibrationRecord, scale: ScaleFactors,
              distortion_model: str) -> Tuple[Frame, CalibrationRecord]:
        """
        フレームの歪みを除去する

        Parameters:
        -----------
        frame : Frame
            入力フレーム
        calibration : CalibrationRecord
            フレームサイズに整合済みのキャリブレーション（変更しない）
        scale : ScaleFactors
            出力スケール
        distortion_model : str
            歪みモデル名（大文字小文字は無視）

        Returns:
        --------
        tuple(Frame, CalibrationRecord)
            補正済みフレームと、歪み係数0・モデル "none" のキャリブレーション

        Raises:
        -------
        InsufficientDistortionError
            歪み係数が4個未満の場合
        """
        source = calibration.intrinsics
        if source.D.size < DISTORTION_COEFF_COUNT:
            raise InsufficientDistortionError(int(source.D.size), DISTORTION_COEFF_COUNT)

        model = (distortion_model or "").lower()
        target = derive_target_intrinsics(source, scale)
        target_size = compute_target_size(frame.width, frame.height, scale.resolution_scale)

        key = RemapCacheKey(
            source_k=tuple(source.K.reshape(-1).tolist()),
            distortion=tuple(source.D[:DISTORTION_COEFF_COUNT].tolist()),
            target_k=tuple(target.K.reshape(-1).tolist()),
            target_size=target_size,
            distortion_model=model,
        )
        if self._table is None or self._table.key != key:
            self._rebuild(frame.image, source, target, key)

        output = cv2.remap(
            frame.image,
            self._table.map1,
            self._table.map2,
            cv2.INTER_LINEAR,
            dst=self._buffer,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
        self._buffer = output

        target.width, target.height = target_size
        target.D = np.zeros(OUTPUT_DISTORTION_COEFF_COUNT, dtype=np.float64)
        target.distortion_model = DISTORTION_MODEL_NONE

        corrected_calibration = CalibrationRecord(
            intrinsics=target,
            stamp=calibration.stamp,
            frame_id=calibration.frame_id,
            camera_name=calibration.camera_name,
        )
        corrected_frame = Frame(
            image=output,
            encoding=frame.encoding,
            stamp=frame.stamp,
            frame_id=frame.frame_id,
        )
        return corrected_frame, corrected_calibration

    def _rebuild(self, image: np.ndarray, source: CameraIntrinsics, target: CameraIntrinsics,
                 key: RemapCacheKey) -> None:
        D = source.D[:DISTORTION_COEFF_COUNT]
        size = key.target_size

        if key.distortion_model == DISTORTION_MODEL_FISHEYE:
            map1, map2 = cv2.fisheye.initUndistortRectifyMap(
                source.K, D.reshape(DISTORTION_COEFF_COUNT, 1), np.eye(3), target.K, size, cv2.CV_16SC2
            )
        else:
            map1, map2 = cv2.initUndistortRectifyMap(
                source.K, D.reshape(1, DISTORTION_COEFF_COUNT), None, target.K, size, cv2.CV_16SC2
            )

        # 作業バッファを目標サイズに合わせる
        self._buffer = cv2.resize(image, size, interpolation=cv2.INTER_LINEAR)
        self._table = GeometricRemapTable(map1=map1, map2=map2, key=key)
        self.build_count += 1

        logger.debug(
            f"リマップテーブル生成 #{self.build_count}: {size[0]}x{size[1]}, "
            f"model={key.distortion_model or '-'}"
        )
