"""
カスタム例外クラス - CvCapture用

デバイスオープン失敗、プロパティ設定失敗、キャリブレーション不整合などを
明示的に区別するための例外クラス群。

open() の失敗のみ呼び出し元へ伝搬する。その他は capture/publish の境界内で
ログ出力され、キャプチャループを止めない。
"""

from typing import Union


class DeviceOpenError(Exception):
    """
    デバイスオープンエラー

    指定したデバイス（インデックス・デバイスパス・動画ファイル）を
    開けなかった場合に送出される。内部での再試行は行わない。

    Attributes:
    -----------
    selector : int or str
        オープンに使用したセレクタ
    kind : str
        セレクタ種別（'device_id' / 'device_path' / 'file'）
    """

    def __init__(self, selector: Union[int, str], kind: str = "device_id"):
        self.selector = selector
        self.kind = kind
        super().__init__(f"{kind} {selector} cannot be opened")


class PropertySetFailure(Exception):
    """
    デバイスプロパティ設定失敗

    デバイスが値を受け付けなかった場合の非致命エラー。
    発生毎にログ出力されるが、オープン/キャプチャは中断しない。

    Attributes:
    -----------
    code : int
        プロパティコード（cv2.CAP_PROP_*）
    value : float
        設定しようとした値
    """

    def __init__(self, code: int, value: float):
        self.code = code
        self.value = value
        super().__init__(f"Setting with code {code} and value {value} failed")


class CalibrationError(Exception):
    """キャリブレーション内容の不備を表す基底例外"""


class CalibrationSizeMismatch(CalibrationError):
    """
    キャリブレーション解像度とフレーム解像度の不一致

    rescale_camera_info が無効な場合の非致命条件。
    セッション毎に1回だけ警告される。
    """

    def __init__(self, stored_size, actual_size):
        self.stored_size = tuple(stored_size)
        self.actual_size = tuple(actual_size)
        super().__init__(
            f"Calibration resolution {stored_size[0]}x{stored_size[1]} does not match "
            f"camera resolution {actual_size[0]}x{actual_size[1]}. "
            f"Use rescale_camera_info param for rescaling"
        )


class InsufficientDistortionError(CalibrationError):
    """
    歪み係数不足エラー

    歪み補正には最低4個の係数が必要。不足時は補正を行わず、
    フレームは未補正のまま通過させる。
    """

    def __init__(self, coefficient_count: int, required_count: int = 4):
        self.coefficient_count = coefficient_count
        self.required_count = required_count
        super().__init__(
            f"歪み係数が不足しています (係数数: {coefficient_count}, 必要数: {required_count})"
        )


class CalibrationFormatError(CalibrationError):
    """キャリブレーションファイルの形式不正"""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"キャリブレーションファイルが不正です: {path} ({reason})")


class CalibrationLoadSkipped(Exception):
    """
    キャリブレーション読み込みスキップ

    URL未設定または不正な場合。エラーではなく、何もしないことを表す。

    Attributes:
    -----------
    url : str or None
        指定されたURL
    reason : str
        スキップ理由
    """

    def __init__(self, url, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"camera_info_url の読み込みをスキップ: {url!r} ({reason})")
