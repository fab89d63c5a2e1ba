import numpy as np
import pytest

from core.camera_models import CalibrationRecord, CameraIntrinsics
from core.capture_device import CaptureDevice


class FakeDevice(CaptureDevice):
    """読み込みフレームとプロパティ設定結果を制御できるテスト用デバイス"""

    def __init__(self, frames=None, repeat=None, open_ok=True, accept_set=True):
        self.frames = list(frames or [])
        self.repeat = repeat
        self.open_ok = open_ok
        self.accept_set = accept_set
        self.opened = False
        self.selector = None
        self.set_calls = []
        self.close_count = 0
        self.read_count = 0

    def open(self, selector):
        self.selector = selector
        self.opened = self.open_ok
        return self.open_ok

    def is_opened(self):
        return self.opened

    def read(self):
        self.read_count += 1
        if self.frames:
            return True, self.frames.pop(0)
        if self.repeat is not None:
            return True, self.repeat.copy()
        return False, None

    def set(self, property_id, value):
        self.set_calls.append((property_id, value))
        if callable(self.accept_set):
            return self.accept_set(property_id, value)
        return self.accept_set

    def close(self):
        self.opened = False
        self.close_count += 1


def make_intrinsics(width=640, height=480, fx=500.0, fy=500.0, cx=320.0, cy=240.0,
                    dist=(-0.1, 0.01, 0.001, 0.001, 0.0), model="plumb_bob"):
    K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]])
    return CameraIntrinsics.from_camera_matrix(K, np.array(dist), width, height, model)


def make_record(**kwargs):
    return CalibrationRecord(intrinsics=make_intrinsics(**kwargs), camera_name="camera")


def make_image(width=640, height=480, channels=3):
    rng = np.random.default_rng(0)
    shape = (height, width) if channels == 1 else (height, width, channels)
    return rng.integers(0, 255, size=shape, dtype=np.uint8)


@pytest.fixture
def fake_device():
    return FakeDevice(repeat=make_image())


CALIBRATION_YAML = """\
image_width: 640
image_height: 480
camera_name: camera
camera_matrix:
  rows: 3
  cols: 3
  data: [500.0, 0.0, 320.0, 0.0, 500.0, 240.0, 0.0, 0.0, 1.0]
distortion_model: plumb_bob
distortion_coefficients:
  rows: 1
  cols: 5
  data: [-0.1, 0.01, 0.001, 0.001, 0.0]
rectification_matrix:
  rows: 3
  cols: 3
  data: [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0]
projection_matrix:
  rows: 3
  cols: 4
  data: [500.0, 0.0, 320.0, 0.0, 0.0, 500.0, 240.0, 0.0, 0.0, 0.0, 1.0, 0.0]
"""


@pytest.fixture
def calibration_file(tmp_path):
    path = tmp_path / "camera.yaml"
    path.write_text(CALIBRATION_YAML, encoding="utf-8")
    return path
