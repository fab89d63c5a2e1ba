"""
キャリブレーション解像度整合モジュール

保存されたキャリブレーションの解像度と実フレームの解像度を比較し、
不一致時は内部パラメータを線形スケーリングする。

スケーリングは正方画素・クロップなしの一様リサイズを仮定した近似。
レターボックスやクロップを伴う解像度変更では正しくない。
"""

from typing import Optional

from core.camera_models import CalibrationRecord, CameraIntrinsics
from core.exceptions import CalibrationSizeMismatch
from utils.logger import LogOnce, get_logger

logger = get_logger(__name__)

# アスペクト比の相対差がこれを超えたらクロップ/レターボックスの疑い
ASPECT_RATIO_TOLERANCE = 0.01

# LogOnce のキー
WARN_SIZE_MISMATCH = "calibration_size_mismatch"
WARN_INVALID_SIZE = "calibration_invalid_size"
INFO_RESCALED = "calibration_rescaled"
WARN_ASPECT_RATIO = "calibration_aspect_ratio"


def rescale_intrinsics(intrinsics: CameraIntrinsics, width_coeff: float,
                       height_coeff: float) -> CameraIntrinsics:
    """
    K/P の水平・垂直要素を係数倍する（in-place）

    水平: K[0,0], K[0,2], P[0,0], P[0,2]
    垂直: K[1,1], K[1,2], P[1,1], P[1,2]
    width/height は変更しない。

    Returns:
    --------
    CameraIntrinsics
        引数と同一のオブジェクト
    """
    intrinsics.K[0, 0] *= width_coeff
    intrinsics.K[0, 2] *= width_coeff
    intrinsics.K[1, 1] *= height_coeff
    intrinsics.K[1, 2] *= height_coeff

    intrinsics.P[0, 0] *= width_coeff
    intrinsics.P[0, 2] *= width_coeff
    intrinsics.P[1, 1] *= height_coeff
    intrinsics.P[1, 2] *= height_coeff
    return intrinsics


class CalibrationReconciler:
    """
    キャリブレーション解像度をフレーム解像度へ合わせる

    1回限りの警告状態はインスタンス（＝所有セッション）ごとに保持する。
    """

    def __init__(self, log_once: Optional[LogOnce] = None):
        self._once = log_once or LogOnce(logger)

    def reconcile(self, calibration: CalibrationRecord, actual_width: int,
                  actual_height: int, rescale_enabled: bool) -> CalibrationRecord:
        """
        キャリブレーションを実フレームサイズへ整合させる（in-place）

        Parameters:
        -----------
        calibration : CalibrationRecord
            整合対象。書き換えられる
        actual_width, actual_height : int
            実フレームサイズ
        rescale_enabled : bool
            rescale_camera_info の値

        Returns:
        --------
        CalibrationRecord
            引数と同一のオブジェクト
        """
        intrinsics = calibration.intrinsics
        stored_width, stored_height = intrinsics.size

        if stored_width == 0 and stored_height == 0:
            # 未設定：スケール元が無いのでサイズのみ採用
            intrinsics.width = actual_width
            intrinsics.height = actual_height
            return calibration

        if stored_width == actual_width and stored_height == actual_height:
            return calibration

        if not rescale_enabled:
            mismatch = CalibrationSizeMismatch((stored_width, stored_height), (actual_width, actual_height))
            self._once.warning(WARN_SIZE_MISMATCH, str(mismatch))
            return calibration

        if stored_width == 0 or stored_height == 0:
            # 片側だけ0のレコードは係数を計算できない
            self._once.warning(
                WARN_INVALID_SIZE,
                f"キャリブレーション解像度 {stored_width}x{stored_height} が不正なため再スケールできません",
            )
            return calibration

        self._check_aspect_ratio(stored_width, stored_height, actual_width, actual_height)

        width_coeff = float(actual_width) / stored_width
        height_coeff = float(actual_height) / stored_height
        rescale_intrinsics(intrinsics, width_coeff, height_coeff)
        intrinsics.width = actual_width
        intrinsics.height = actual_height

        self._once.info(
            INFO_RESCALED,
            "Camera calibration automatically rescaled from %dx%d to %dx%d",
            stored_width, stored_height, actual_width, actual_height,
        )
        return calibration

    def _check_aspect_ratio(self, stored_width: int, stored_height: int,
                            actual_width: int, actual_height: int) -> None:
        stored_ratio = stored_width / stored_height
        actual_ratio = actual_width / actual_height
        if abs(actual_ratio - stored_ratio) / stored_ratio > ASPECT_RATIO_TOLERANCE:
            self._once.warning(
                WARN_ASPECT_RATIO,
                f"アスペクト比が変化しています ({stored_width}x{stored_height} → "
                f"{actual_width}x{actual_height})。クロップ/レターボックスを伴う場合、"
                f"再スケール後のキャリブレーションは正しくありません",
            )
