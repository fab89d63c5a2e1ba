"""
キャプチャデバイスモジュール

デバイス（カメラ番号・デバイスパス・動画ファイル）を所有リソースとして扱う抽象と、
OpenCV VideoCapture による実装。
コンテキストマネージャ対応で、全ての終了経路でハンドルを解放する。
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from utils.logger import get_logger

logger = get_logger(__name__)

DeviceSelector = Union[int, str]


class CaptureDevice(ABC):
    """
    デバイス抽象

    open/is_opened/read/set/close の明示的な操作を持つ。
    """

    @abstractmethod
    def open(self, selector: DeviceSelector) -> bool:
        """デバイスを開く。成功時True"""

    def open_file(self, path: str) -> bool:
        """動画ファイルを開く。既定ではopen()と同じ"""
        return self.open(path)

    @abstractmethod
    def is_opened(self) -> bool:
        """オープン中か"""

    @abstractmethod
    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """1フレーム読み込む。(成功, フレーム)"""

    @abstractmethod
    def set(self, property_id: int, value: float) -> bool:
        """プロパティを設定。デバイスが受け付けた場合True"""

    def get(self, property_id: int) -> float:
        """プロパティを取得。未対応なら0"""
        return 0.0

    @abstractmethod
    def close(self) -> None:
        """ハンドルを解放"""

    def __enter__(self):
        """コンテキストマネージャエントリ"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """コンテキストマネージャ終了時にリソース解放"""
        self.close()
        return False


class OpenCVCaptureDevice(CaptureDevice):
    """
    cv2.VideoCapture によるデバイス実装

    - int: カメラ番号
    - '/dev/' で始まる str: V4L2 デバイスパス（cv2.CAP_V4L）
    - その他の str: 動画ファイル/ストリームURL
    """

    def __init__(self):
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self, selector: DeviceSelector) -> bool:
        self.close()
        if isinstance(selector, str) and selector.startswith('/dev/'):
            self._cap = cv2.VideoCapture(selector, cv2.CAP_V4L)
        else:
            self._cap = cv2.VideoCapture(selector)

        if not self._cap.isOpened():
            # オープン失敗時もハンドルは解放する
            self.close()
            return False

        logger.debug(
            f"デバイスを開きました: {selector} "
            f"({int(self.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(self.get(cv2.CAP_PROP_FRAME_HEIGHT))} "
            f"@ {self.get(cv2.CAP_PROP_FPS):.1f}fps)"
        )
        return True

    def open_file(self, path: str) -> bool:
        self.close()
        self._cap = cv2.VideoCapture(path)
        if not self._cap.isOpened():
            self.close()
            return False
        return True

    def is_opened(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        if self._cap is None:
            return False, None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return False, None
        return True, frame

    def set(self, property_id: int, value: float) -> bool:
        if self._cap is None:
            return False
        return bool(self._cap.set(int(property_id), float(value)))

    def get(self, property_id: int) -> float:
        if self._cap is None:
            return 0.0
        return float(self._cap.get(int(property_id)))

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.debug("デバイスを解放しました")

    def __del__(self):
        """デストラクタ"""
        self.close()
