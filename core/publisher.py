"""
配信チャネルモジュール

フレームとキャリブレーションを1単位として下流へ送る。
配信は撃ちっぱなしで、背圧や到達確認は扱わない。
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, List, Optional, Tuple

from core.camera_models import CalibrationRecord, Frame
from utils.logger import get_logger

logger = get_logger(__name__)

FramePair = Tuple[Frame, CalibrationRecord]


class PublishChannel(ABC):
    """advertise() で得られる配信チャネル"""

    def __init__(self, topic_name: str, buffer_depth: int):
        self.topic_name = topic_name
        self.buffer_depth = max(1, int(buffer_depth))
        self.published_count = 0

    @abstractmethod
    def publish(self, frame: Frame, calibration: CalibrationRecord) -> None:
        """フレームとキャリブレーションを1単位として送る"""


class Publisher(ABC):
    """配信チャネルの生成元"""

    @abstractmethod
    def advertise(self, topic_name: str, buffer_depth: int) -> PublishChannel:
        """トピックを公開してチャネルを返す"""


class QueueChannel(PublishChannel):
    """
    プロセス内キューチャネル

    buffer_depth を超えると最も古いペアを破棄する。
    送信時点のスナップショットを保持するため、配列はコピーして格納する。
    """

    def __init__(self, topic_name: str, buffer_depth: int):
        super().__init__(topic_name, buffer_depth)
        self._queue: Deque[FramePair] = deque(maxlen=self.buffer_depth)

    def publish(self, frame: Frame, calibration: CalibrationRecord) -> None:
        snapshot = Frame(
            image=frame.image.copy(),
            encoding=frame.encoding,
            stamp=frame.stamp,
            frame_id=frame.frame_id,
        )
        self._queue.append((snapshot, calibration.copy()))
        self.published_count += 1

    def latest(self) -> Optional[FramePair]:
        """最新のペア（無ければNone）"""
        return self._queue[-1] if self._queue else None

    def drain(self) -> List[FramePair]:
        """キュー内の全ペアを取り出す"""
        items = list(self._queue)
        self._queue.clear()
        return items

    def __len__(self) -> int:
        return len(self._queue)


class QueuePublisher(Publisher):
    """QueueChannel を生成する Publisher"""

    def __init__(self):
        self.channels = {}

    def advertise(self, topic_name: str, buffer_depth: int) -> QueueChannel:
        channel = QueueChannel(topic_name, buffer_depth)
        self.channels[topic_name] = channel
        logger.debug(f"トピックを公開: {topic_name} (depth={channel.buffer_depth})")
        return channel
