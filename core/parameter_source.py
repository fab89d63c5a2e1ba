"""
CvCapture - パラメータソース
JSON/YAMLベースのキー・バリュー設定の読み込み・マージ機能

キャプチャセッションはオープン時とキャプチャ毎にここから値を参照する。
複数ファイルやCLIオーバーライドは後勝ちでマージされる。
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Type, Union

import yaml

from utils.logger import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _coerce(value: Any, expected_type: Optional[Type]) -> Tuple[bool, Any]:
    """期待型への変換可否を判定（int→float は許可、bool と数値の混同は不可）"""
    if expected_type is None:
        return True, value
    if expected_type is bool:
        return (True, value) if isinstance(value, bool) else (False, None)
    if isinstance(value, bool):
        return False, None
    if expected_type is float and isinstance(value, (int, float)):
        return True, float(value)
    if expected_type is int and isinstance(value, int):
        return True, value
    if expected_type is str and isinstance(value, str):
        return True, value
    return False, None


class ParameterSource:
    """
    読み取り専用のキー・バリュー設定ソース

    使用例:
    --------
    >>> params = ParameterSource({'capture_delay': 0.05})
    >>> params.get('capture_delay', 0.0)
    0.05
    >>> params.get_param('camera_info_url')
    (False, None)
    """

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self._params: Dict[str, Any] = dict(params or {})

    @classmethod
    def from_files(cls, paths: Iterable[PathLike],
                   overrides: Optional[Dict[str, Any]] = None) -> 'ParameterSource':
        """
        設定ファイル群から生成

        ファイル → オーバーライド の順でマージ（後勝ち）。
        """
        source = cls()
        for path in paths:
            source.load_file(path)
        if overrides:
            source.merge(overrides)
        return source

    def load_file(self, path: PathLike) -> None:
        """
        JSON/YAMLファイルを読み込んでマージ

        Raises:
        -------
        FileNotFoundError
            ファイルが存在しない場合
        ValueError
            ルート要素がオブジェクトでない場合
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"パラメータファイルが見つかりません: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"パラメータファイルのルートはオブジェクトである必要があります: {path}")

        self.merge(data)
        logger.info(f"パラメータファイルを読み込みました: {path} ({len(data)}件)")

    def merge(self, overrides: Dict[str, Any]) -> None:
        """設定辞書をディープマージ"""
        self._params = self._merge_dict(self._params, overrides)

    @classmethod
    def _merge_dict(cls, base: Dict, overrides: Dict) -> Dict:
        result = base.copy()
        for key, value in overrides.items():
            if isinstance(value, dict) and key in result and isinstance(result[key], dict):
                # 辞書の場合は再帰的にマージ
                result[key] = cls._merge_dict(result[key], value)
            else:
                result[key] = value
        return result

    def get_param(self, key: str, expected_type: Optional[Type] = None) -> Tuple[bool, Any]:
        """
        値を取得

        Parameters:
        -----------
        key : str
            パラメータ名
        expected_type : type, optional
            期待する型（bool/int/float/str）。一致しない値は未設定扱い

        Returns:
        --------
        tuple(bool, Any)
            (見つかったか, 値)
        """
        if key not in self._params:
            return False, None
        ok, value = _coerce(self._params[key], expected_type)
        if not ok:
            logger.warning(
                f"パラメータ '{key}' の型が一致しません: "
                f"期待 {expected_type.__name__}, 実際 {type(self._params[key]).__name__}"
            )
        return ok, value

    def get(self, key: str, default: Any = None) -> Any:
        """値を取得。未設定または型不一致の場合は default を返す"""
        expected_type = type(default) if default is not None else None
        found, value = self.get_param(key, expected_type)
        return value if found else default

    def has(self, key: str) -> bool:
        return key in self._params

    def set(self, key: str, value: Any) -> None:
        self._params[key] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._params)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._params)
