"""
キャリブレーションストア - CvCapture用

URL形式の識別子からキャリブレーション情報を読み込み、検証して保持する。
ファイル形式は ROS camera_info の YAML（同構造の JSON も可）。

対応URL:
- ``file:///abs/path/camera.yaml``
- スキームなしのファイルパス
- 空文字列（既定の ``~/.ros/camera_info/${NAME}.yaml``）

``${NAME}`` はカメラ名に置換される。その他のスキームは検証で不合格となる。
"""

import json
import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import numpy as np
import yaml

from core.camera_models import CalibrationRecord, CameraIntrinsics
from core.exceptions import CalibrationFormatError
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CALIBRATION_DIR = Path.home() / ".ros" / "camera_info"
DEFAULT_URL_TEMPLATE = "${NAME}.yaml"

_SUPPORTED_SUFFIXES = ('.yaml', '.yml', '.json')
_VALID_NAME_RE = re.compile(r'^[A-Za-z0-9_]+$')


def _read_matrix(data: dict, key: str, rows: int, cols: Optional[int], path) -> Optional[np.ndarray]:
    """{rows, cols, data} 形式の行列を読む。キーが無ければNone"""
    if key not in data:
        return None
    node = data[key]
    values = node.get('data') if isinstance(node, dict) else node
    if values is None:
        raise CalibrationFormatError(path, f"'{key}' に data がありません")
    try:
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as e:
        raise CalibrationFormatError(path, f"'{key}' に数値以外の要素があります: {e}")
    if cols is None:
        return arr
    if arr.size != rows * cols:
        raise CalibrationFormatError(path, f"'{key}' の要素数が {rows}x{cols} ではありません: {arr.size}")
    return arr.reshape(rows, cols)


def parse_calibration(data: dict, path="<memory>") -> CameraIntrinsics:
    """
    camera_info 辞書から CameraIntrinsics を生成

    Raises:
    -------
    CalibrationFormatError
        必須項目欠落・要素数不一致の場合
    """
    if not isinstance(data, dict):
        raise CalibrationFormatError(path, "ルートがオブジェクトではありません")

    K = _read_matrix(data, 'camera_matrix', 3, 3, path)
    if K is None:
        raise CalibrationFormatError(path, "'camera_matrix' がありません")

    D = _read_matrix(data, 'distortion_coefficients', 1, None, path)
    R = _read_matrix(data, 'rectification_matrix', 3, 3, path)
    P = _read_matrix(data, 'projection_matrix', 3, 4, path)

    try:
        width = int(data.get('image_width', 0))
        height = int(data.get('image_height', 0))
    except (TypeError, ValueError) as e:
        raise CalibrationFormatError(path, f"画像サイズが不正です: {e}")

    return CameraIntrinsics(
        K=K,
        P=P if P is not None else np.hstack([K, np.zeros((3, 1))]),
        D=D if D is not None else np.zeros(0),
        R=R if R is not None else np.eye(3),
        distortion_model=str(data.get('distortion_model', '') or ''),
        width=width,
        height=height,
    )


class CalibrationStore:
    """
    キャリブレーション情報の読み込み・保持

    get_camera_info() は常にディープコピーを返すため、呼び出し側での
    in-place 書き換えが保持中のレコードへ漏れることはない。
    """

    def __init__(self, camera_name: str = "camera",
                 calibration_dir: Optional[Path] = None):
        """
        初期化

        Parameters:
        -----------
        camera_name : str
            カメラ名（${NAME} 置換と読み込み時の照合に使用）
        calibration_dir : Path, optional
            空URL時の既定ディレクトリ
        """
        if not _VALID_NAME_RE.match(camera_name):
            logger.warning(f"カメラ名に使用できない文字が含まれています: {camera_name!r}")
        self.camera_name = camera_name
        self.calibration_dir = Path(calibration_dir) if calibration_dir else DEFAULT_CALIBRATION_DIR
        self._record = CalibrationRecord(camera_name=camera_name)
        self._url: Optional[str] = None

    # ------------------------------------------------------------------
    # URL
    # ------------------------------------------------------------------

    def _expand(self, url: str) -> str:
        return url.replace("${NAME}", self.camera_name)

    def resolve_url(self, url: str) -> Optional[Path]:
        """
        URLをファイルパスへ解決する。未対応スキームはNone
        """
        url = self._expand(url.strip())
        if not url:
            return self.calibration_dir / self._expand(DEFAULT_URL_TEMPLATE)

        parsed = urlparse(url)
        if parsed.scheme == 'file':
            if parsed.netloc not in ('', 'localhost'):
                return None
            return Path(unquote(parsed.path))
        if parsed.scheme == '' or (len(parsed.scheme) == 1 and url[1:3] in (':\\', ':/')):
            # スキームなし、またはWindowsドライブレター
            return Path(url).expanduser()
        return None

    def validate_url(self, url: str) -> bool:
        """
        URLが読み込み可能な形式か検証する

        Returns:
        --------
        bool
            対応スキームかつ対応拡張子であればTrue
        """
        if url is None:
            return False
        path = self.resolve_url(url)
        if path is None:
            logger.warning(f"未対応の camera_info_url です: {url}")
            return False
        if path.suffix.lower() not in _SUPPORTED_SUFFIXES:
            logger.warning(f"camera_info_url の拡張子が未対応です: {url}")
            return False
        return True

    # ------------------------------------------------------------------
    # 読み込み/保存
    # ------------------------------------------------------------------

    def load_camera_info(self, url: str) -> CalibrationRecord:
        """
        URLからキャリブレーションを読み込む

        ファイルが存在しない、または形式不正の場合は警告/エラーを出力し、
        保持中のレコードを変更しない。

        Returns:
        --------
        CalibrationRecord
            読み込み後（失敗時は現状）のレコードのコピー
        """
        self._url = url
        path = self.resolve_url(url)
        if path is None:
            logger.warning(f"未対応の camera_info_url です: {url}")
            return self.get_camera_info()

        if not path.exists():
            logger.warning(f"キャリブレーションファイルが見つかりません: {path}")
            return self.get_camera_info()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix.lower() == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
            intrinsics = parse_calibration(data, path)
        except CalibrationFormatError as e:
            logger.error(str(e))
            return self.get_camera_info()
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"キャリブレーションファイルの読み込みエラー: {path}: {e}")
            return self.get_camera_info()

        file_camera_name = data.get('camera_name')
        if file_camera_name and file_camera_name != self.camera_name:
            logger.warning(
                f"[{self.camera_name}] キャリブレーションのカメラ名が一致しません: {file_camera_name}"
            )

        self._record = CalibrationRecord(intrinsics=intrinsics, camera_name=self.camera_name)
        logger.info(
            f"キャリブレーションを読み込みました: {path} "
            f"({intrinsics.width}x{intrinsics.height}, model={intrinsics.distortion_model or '-'})"
        )
        return self.get_camera_info()

    def save_camera_info(self, url: Optional[str] = None) -> bool:
        """
        保持中のキャリブレーションをファイルへ保存する

        Parameters:
        -----------
        url : str, optional
            保存先URL。Noneの場合は最後に読み込んだURL（無ければ既定）
        """
        target = url if url is not None else (self._url or "")
        path = self.resolve_url(target)
        if path is None or path.suffix.lower() not in _SUPPORTED_SUFFIXES:
            logger.error(f"保存先URLが不正です: {target}")
            return False

        data = {"camera_name": self.camera_name}
        data.update(self._record.intrinsics.to_dict())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                if path.suffix.lower() == '.json':
                    json.dump(data, f, indent=2)
                else:
                    yaml.safe_dump(data, f, default_flow_style=None, sort_keys=False)
        except OSError as e:
            logger.error(f"キャリブレーションの保存に失敗: {path}: {e}")
            return False
        logger.info(f"キャリブレーションを保存しました: {path}")
        return True

    # ------------------------------------------------------------------
    # 参照/更新
    # ------------------------------------------------------------------

    def get_camera_info(self) -> CalibrationRecord:
        """保持中レコードのディープコピー"""
        return self._record.copy()

    def set_camera_info(self, record: CalibrationRecord) -> bool:
        """レコードを差し替える"""
        self._record = record.copy()
        self._record.camera_name = self.camera_name
        return True

    def is_calibrated(self) -> bool:
        return self._record.is_calibrated
