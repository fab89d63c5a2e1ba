import logging

import numpy as np

from conftest import make_image, make_record
from core.camera_models import CalibrationRecord, Frame
from core.publisher import QueueChannel, QueuePublisher
from utils.logger import LogOnce, get_logger
from utils.rerun_publisher import RerunChannel


class RecordingRerun:
    """rerun モジュールの呼び出しを記録する"""

    def __init__(self):
        self.times = []
        self.logged = []

    def set_time(self, timeline, **kwargs):
        self.times.append((timeline, kwargs))

    def log(self, entity_path, entity):
        self.logged.append((entity_path, entity))

    def Pinhole(self, **kwargs):
        return ("pinhole", kwargs)

    def Image(self, image):
        return ("image", image)


def test_queue_channel_drops_oldest_beyond_depth():
    channel = QueuePublisher().advertise("image_raw", 2)
    for stamp in (1.0, 2.0, 3.0):
        channel.publish(Frame(image=make_image(8, 6), stamp=stamp), make_record())

    assert channel.published_count == 3
    assert [frame.stamp for frame, _ in channel.drain()] == [2.0, 3.0]
    assert len(channel) == 0


def test_queue_channel_stores_snapshots():
    channel = QueueChannel("image_raw", 1)
    image = make_image(8, 6)
    record = make_record()

    channel.publish(Frame(image=image), record)
    image[:] = 0
    record.intrinsics.K[0, 0] = 1.0

    frame, calibration = channel.latest()
    assert frame.image.any()
    assert calibration.intrinsics.K[0, 0] == 500.0


def test_rerun_channel_logs_pinhole_and_rgb_image():
    rr = RecordingRerun()
    channel = RerunChannel(rr, "/front/image_raw", 1)
    image = np.zeros((6, 8, 3), dtype=np.uint8)
    image[..., 0] = 255

    channel.publish(Frame(image=image, stamp=12.0), make_record(width=8, height=6))

    assert rr.times == [("frame", {"sequence": 1}), ("capture_time", {"timestamp": 12.0})]
    (pinhole_path, pinhole), (image_path, logged_image) = rr.logged
    assert pinhole_path == "/front/image_raw"
    assert pinhole[1]["resolution"] == [8, 6]
    assert image_path == "/front/image_raw/image"
    # BGR → RGB
    assert logged_image[1][0, 0].tolist() == [0, 0, 255]


def test_rerun_channel_skips_pinhole_when_uncalibrated():
    rr = RecordingRerun()
    channel = RerunChannel(rr, "image_raw", 1)

    channel.publish(Frame(image=make_image(8, 6, channels=1), encoding="mono8"), CalibrationRecord())

    assert [path for path, _ in rr.logged] == ["/image_raw/image"]


def test_rerun_channel_without_sdk_counts_only():
    channel = RerunChannel(None, "image_raw", 1)
    channel.publish(Frame(image=make_image(8, 6)), make_record())
    assert channel.published_count == 1


def test_log_once_per_key(caplog):
    caplog.set_level(logging.INFO)
    once = LogOnce(get_logger("test_log_once"))

    assert once.warning("a", "first %d", 1)
    assert not once.warning("a", "second")
    assert once.info("b", "other")
    assert once.has_emitted("a")

    once.reset()
    assert not once.has_emitted("a")
    assert [r.getMessage() for r in caplog.records] == ["first 1", "other"]
