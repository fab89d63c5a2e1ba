import logging

import numpy as np
import pytest

from conftest import make_record
from core.camera_models import CalibrationRecord
from core.reconciler import CalibrationReconciler, rescale_intrinsics


@pytest.mark.parametrize("width_coeff,height_coeff", [(2.0, 2.0), (0.5, 0.75), (1.3, 0.37), (3.0, 1.0)])
def test_rescale_then_reciprocal_restores_intrinsics(width_coeff, height_coeff):
    original = make_record().intrinsics
    scaled = rescale_intrinsics(original.copy(), width_coeff, height_coeff)
    restored = rescale_intrinsics(scaled, 1.0 / width_coeff, 1.0 / height_coeff)

    assert np.allclose(restored.K, original.K)
    assert np.allclose(restored.P, original.P)


def test_unpopulated_size_adopts_frame_size_without_scaling():
    record = make_record(width=0, height=0)
    K_before = record.intrinsics.K.copy()
    P_before = record.intrinsics.P.copy()

    CalibrationReconciler().reconcile(record, 1280, 720, rescale_enabled=True)

    assert record.intrinsics.size == (1280, 720)
    assert np.array_equal(record.intrinsics.K, K_before)
    assert np.array_equal(record.intrinsics.P, P_before)


def test_uncalibrated_record_adopts_frame_size():
    record = CalibrationRecord()
    CalibrationReconciler().reconcile(record, 320, 240, rescale_enabled=False)
    assert record.intrinsics.size == (320, 240)
    assert not record.is_calibrated


def test_matching_size_is_strict_noop():
    record = make_record()
    K_before = record.intrinsics.K.copy()
    P_before = record.intrinsics.P.copy()

    result = CalibrationReconciler().reconcile(record, 640, 480, rescale_enabled=True)

    assert result is record
    assert np.array_equal(record.intrinsics.K, K_before)
    assert np.array_equal(record.intrinsics.P, P_before)


def test_mismatch_with_rescale_doubles_entries():
    record = make_record(width=800, height=600, fx=600.0, fy=610.0, cx=400.0, cy=300.0)

    CalibrationReconciler().reconcile(record, 1600, 1200, rescale_enabled=True)

    K = record.intrinsics.K
    P = record.intrinsics.P
    assert record.intrinsics.size == (1600, 1200)
    assert K[0, 0] == pytest.approx(1200.0)
    assert K[0, 2] == pytest.approx(800.0)
    assert K[1, 1] == pytest.approx(1220.0)
    assert K[1, 2] == pytest.approx(600.0)
    assert P[0, 0] == pytest.approx(1200.0)
    assert P[0, 2] == pytest.approx(800.0)
    assert P[1, 1] == pytest.approx(1220.0)
    assert P[1, 2] == pytest.approx(600.0)
    # スケール対象外の要素は変化しない
    assert K[2, 2] == 1.0
    assert P[2, 2] == 1.0


def test_mismatch_with_rescale_uses_independent_axis_coefficients():
    record = make_record(width=800, height=600, fx=600.0, fy=600.0, cx=400.0, cy=300.0)

    CalibrationReconciler().reconcile(record, 400, 450, rescale_enabled=True)

    K = record.intrinsics.K
    assert K[0, 0] == pytest.approx(300.0)
    assert K[0, 2] == pytest.approx(200.0)
    assert K[1, 1] == pytest.approx(450.0)
    assert K[1, 2] == pytest.approx(225.0)


def test_mismatch_without_rescale_keeps_calibration_and_warns_once(caplog):
    caplog.set_level(logging.INFO)
    reconciler = CalibrationReconciler()

    first = make_record(width=800, height=600)
    K_before = first.intrinsics.K.copy()
    reconciler.reconcile(first, 1600, 1200, rescale_enabled=False)

    assert first.intrinsics.size == (800, 600)
    assert np.array_equal(first.intrinsics.K, K_before)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "rescale_camera_info" in warnings[0].getMessage()

    reconciler.reconcile(make_record(width=800, height=600), 1600, 1200, rescale_enabled=False)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1


def test_rescale_notice_logged_once(caplog):
    caplog.set_level(logging.INFO)
    reconciler = CalibrationReconciler()

    for _ in range(3):
        reconciler.reconcile(make_record(width=800, height=600), 1600, 1200, rescale_enabled=True)

    notices = [r for r in caplog.records if "automatically rescaled" in r.getMessage()]
    assert len(notices) == 1
    assert "800x600 to 1600x1200" in notices[0].getMessage()


def test_aspect_ratio_change_is_flagged(caplog):
    caplog.set_level(logging.WARNING)
    record = make_record(width=640, height=480)

    CalibrationReconciler().reconcile(record, 1280, 720, rescale_enabled=True)

    # 再スケール自体は設定どおり適用される
    assert record.intrinsics.size == (1280, 720)
    assert any("アスペクト比" in r.getMessage() for r in caplog.records)


def test_separate_reconcilers_warn_independently(caplog):
    caplog.set_level(logging.WARNING)

    for _ in range(2):
        reconciler = CalibrationReconciler()
        reconciler.reconcile(make_record(width=800, height=600), 1600, 1200, rescale_enabled=False)
        reconciler.reconcile(make_record(width=800, height=600), 1600, 1200, rescale_enabled=False)

    warnings = [r for r in caplog.records if "rescale_camera_info" in r.getMessage()]
    assert len(warnings) == 2


def test_partial_size_warning_does_not_hide_size_mismatch(caplog):
    caplog.set_level(logging.WARNING)
    reconciler = CalibrationReconciler()

    partial = make_record(width=0, height=480)
    reconciler.reconcile(partial, 640, 480, rescale_enabled=True)
    assert partial.intrinsics.size == (0, 480)

    reconciler.reconcile(make_record(width=800, height=600), 1600, 1200, rescale_enabled=False)

    messages = [r.getMessage() for r in caplog.records]
    assert any("再スケールできません" in m for m in messages)
    assert any("rescale_camera_info" in m for m in messages)
