import threading

import cv2
import pytest

from conftest import FakeDevice, make_image
from core.calibration_store import CalibrationStore
from core.driver import CameraDriver
from core.exceptions import DeviceOpenError
from core.parameter_source import ParameterSource
from core.publisher import QueuePublisher


def _driver(params=None, device=None, publisher=None, sleeps=None):
    return CameraDriver(
        ParameterSource(params or {}),
        publisher=publisher or QueuePublisher(),
        device=device or FakeDevice(repeat=make_image()),
        calibration_store=CalibrationStore("camera"),
        clock=lambda: 1.0,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


@pytest.mark.parametrize("params,expected", [
    ({}, 0),
    ({"device_id": 2}, 2),
    ({"device_id": 2, "device_path": "/dev/video4"}, "/dev/video4"),
    ({"device_id": 2, "device_path": "/dev/video4", "file": "clip.mp4"}, "clip.mp4"),
])
def test_open_precedence(params, expected):
    device = FakeDevice(repeat=make_image())
    driver = _driver(params, device=device)

    driver.setup()

    assert device.selector == expected
    assert driver.session.is_open


def test_standard_properties_applied_in_order():
    device = FakeDevice(repeat=make_image())
    driver = _driver({"image_width": 1280, "image_height": 720, "cv_cap_prop_fps": 15.0}, device=device)

    driver.setup()

    assert device.set_calls == [
        (cv2.CAP_PROP_FRAME_WIDTH, 1280.0),
        (cv2.CAP_PROP_FRAME_HEIGHT, 720.0),
        (cv2.CAP_PROP_FPS, 15.0),
    ]


def test_fourcc_set_before_standard_properties():
    device = FakeDevice(repeat=make_image())
    driver = _driver({"cv_cap_prop_fourcc": "MJPG", "image_width": 1280}, device=device)

    driver.setup()

    assert device.set_calls[0] == (cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*"MJPG"))
    assert device.set_calls[1] == (cv2.CAP_PROP_FRAME_WIDTH, 1280.0)


def test_file_source_skips_device_properties():
    device = FakeDevice(repeat=make_image())
    driver = _driver({"file": "clip.mp4", "image_width": 1280}, device=device)

    driver.setup()

    assert device.set_calls == []


def test_setup_propagates_open_failure():
    driver = _driver({"device_id": 5}, device=FakeDevice(open_ok=False))

    with pytest.raises(DeviceOpenError):
        driver.setup()


def test_proceed_publishes_only_captured_frames():
    publisher = QueuePublisher()
    driver = _driver(device=FakeDevice(frames=[make_image()]), publisher=publisher)
    driver.setup()
    channel = publisher.channels["image_raw"]

    assert driver.proceed()
    assert not driver.proceed()
    assert channel.published_count == 1


def test_run_stops_after_max_frames():
    sleeps = []
    publisher = QueuePublisher()
    driver = _driver({"rate": 1000.0, "buffer_size": 10}, publisher=publisher, sleeps=sleeps)
    driver.setup()

    published = driver.run(max_frames=5)

    assert published == 5
    assert publisher.channels["image_raw"].published_count == 5
    assert len(publisher.channels["image_raw"]) == 5


def test_run_stops_at_end_of_file():
    device = FakeDevice(frames=[make_image(), make_image(), make_image()])
    driver = _driver({"file": "clip.mp4"}, device=device)
    driver.setup()

    assert driver.run() == 3
    assert device.read_count == 4


def test_run_honours_stop_event():
    stop = threading.Event()
    stop.set()
    driver = _driver()
    driver.setup()

    assert driver.run(stop_event=stop) == 0


def test_context_manager_releases_device():
    device = FakeDevice(repeat=make_image())
    with _driver(device=device) as driver:
        driver.setup()
    assert device.close_count == 1
    assert not driver.session.is_open


def test_topic_and_frame_id_from_params():
    publisher = QueuePublisher()
    driver = _driver({"topic_name": "front/image_raw", "frame_id": "front_optical"}, publisher=publisher)
    driver.setup()
    driver.proceed()

    frame, calibration = publisher.channels["front/image_raw"].latest()
    assert frame.frame_id == "front_optical"
    assert calibration.frame_id == "front_optical"
