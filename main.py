#!/usr/bin/env python3
"""
CvCapture - カメラフレーム取得・キャリブレーション補正パイプライン
メインエントリポイント

カメラ/動画からフレームを取得し、キャリブレーションを実解像度へ整合、
必要に応じて歪みを除去して (フレーム, キャリブレーション) の組を配信する。

Usage:
    python main.py --device 0 --params camera.yaml   # カメラ番号0
    python main.py --file input.mp4 --undistort     # 動画ファイル
    python main.py --help                           # ヘルプ表示
"""

import argparse
import logging
import sys
from pathlib import Path

# プロジェクトルートをパスに追加
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.exceptions import DeviceOpenError
from core.parameter_source import ParameterSource
from utils.logger import setup_logger, get_logger, set_log_level

logger = get_logger(__name__)


def parse_arguments(argv=None):
    """コマンドライン引数を解析する。"""
    parser = argparse.ArgumentParser(
        prog="cvcapture",
        description="カメラフレーム取得・キャリブレーション補正パイプライン",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
使用例:
  python main.py --device 0                              カメラ番号0から取得
  python main.py --device-path /dev/video2               V4L2デバイスパス指定
  python main.py --file input.mp4 --max-frames 100       動画ファイルから100フレーム
  python main.py --params camera.yaml --undistort        パラメータファイル + 歪み補正
  python main.py --calibration file:///tmp/cam.yaml --rescale
                                                         キャリブレーション再スケール

パラメータファイル（JSON/YAML）のキー:
  capture_delay, flip_image, image_flip_code, undistorted_on,
  undistorted_fov_scale, undistorted_resolution_scale, camera_info_url,
  rescale_camera_info, property_<i>_code / property_<i>_value,
  device_id, device_path, file, rate, topic_name, frame_id, camera_name
        """
    )

    parser.add_argument(
        "--params",
        type=str,
        action="append",
        default=[],
        help="パラメータファイル（JSON/YAML、複数指定時は後勝ち）"
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--device", type=int, default=None, help="カメラ番号")
    source.add_argument("--device-path", type=str, default=None, help="デバイスパス（例: /dev/video0）")
    source.add_argument("--file", type=str, default=None, help="動画ファイルパス")

    parser.add_argument("--calibration", type=str, default=None, help="camera_info_url（file:// またはパス）")
    parser.add_argument("--rate", type=float, default=None, help="キャプチャ周期（Hz）")
    parser.add_argument("--max-frames", type=int, default=None, help="配信フレーム数の上限")
    parser.add_argument("--topic", type=str, default=None, help="公開トピック名")
    parser.add_argument("--frame-id", type=str, default=None, help="座標系ID")
    parser.add_argument("--camera-name", type=str, default=None, help="カメラ名")

    parser.add_argument(
        "--undistort",
        action="store_true",
        default=False,
        help="歪み補正を有効化（undistorted_on）"
    )
    parser.add_argument("--fov-scale", type=float, default=None, help="歪み補正後のFOVスケール")
    parser.add_argument("--resolution-scale", type=float, default=None, help="歪み補正後の解像度スケール")
    parser.add_argument(
        "--rescale",
        action="store_true",
        default=False,
        help="解像度不一致時にキャリブレーションを再スケール（rescale_camera_info）"
    )
    parser.add_argument(
        "--flip",
        type=int,
        choices=[-1, 0, 1],
        default=None,
        help="画像反転コード（0=上下, 1=左右, -1=両方）"
    )

    parser.add_argument(
        "--rerun-spawn",
        action="store_true",
        default=False,
        help="Rerun Viewerを自動起動して配信する"
    )
    parser.add_argument(
        "--rerun-save",
        type=str,
        default=None,
        help="Rerunログを .rrd に保存するパス"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="詳細ログ出力"
    )

    return parser.parse_args(argv)


def build_overrides(args) -> dict:
    """CLI引数をパラメータ上書き辞書へ変換する。"""
    overrides = {}
    if args.device is not None:
        overrides["device_id"] = args.device
    if args.device_path:
        overrides["device_path"] = args.device_path
    if args.file:
        overrides["file"] = args.file
    if args.calibration is not None:
        overrides["camera_info_url"] = args.calibration
    if args.rate is not None:
        overrides["rate"] = float(args.rate)
    if args.topic:
        overrides["topic_name"] = args.topic
    if args.frame_id:
        overrides["frame_id"] = args.frame_id
    if args.camera_name:
        overrides["camera_name"] = args.camera_name
    if args.undistort:
        overrides["undistorted_on"] = True
    if args.fov_scale is not None:
        overrides["undistorted_fov_scale"] = float(args.fov_scale)
    if args.resolution_scale is not None:
        overrides["undistorted_resolution_scale"] = float(args.resolution_scale)
    if args.rescale:
        overrides["rescale_camera_info"] = True
    if args.flip is not None:
        overrides["flip_image"] = True
        overrides["image_flip_code"] = args.flip
    return overrides


def load_params(args) -> ParameterSource:
    """パラメータファイル → CLI引数 の順でマージする。"""
    try:
        return ParameterSource.from_files(args.params, build_overrides(args))
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"パラメータの読み込みに失敗しました: {e}")
        sys.exit(1)


def create_publisher(args):
    """配信先を決定する。Rerun指定時はRerun、それ以外はプロセス内キュー。"""
    from core.publisher import QueuePublisher
    from utils.rerun_publisher import RerunPublisher

    if args.rerun_spawn or args.rerun_save:
        publisher = RerunPublisher(spawn=bool(args.rerun_spawn), save_path=args.rerun_save)
        if publisher.enabled:
            return publisher
    return QueuePublisher()


def run(args) -> int:
    """キャプチャループを実行する。"""
    from core.driver import CameraDriver

    params = load_params(args)
    try:
        driver = CameraDriver(params, publisher=create_publisher(args))
    except ValueError as e:
        logger.error(f"設定が不正です: {e}")
        return 1

    capture_config = driver.session.config
    logger.info("=" * 60)
    logger.info("CvCapture")
    logger.info("=" * 60)
    logger.info(f"トピック: {driver.config.topic_name} (frame_id={driver.config.frame_id})")
    logger.info(f"周期: {driver.config.rate:.1f}Hz")
    if capture_config.flip_image:
        logger.info(f"画像反転: 有効 (code={capture_config.image_flip_code})")
    if capture_config.undistorted_on:
        logger.info(
            "歪み補正: 有効 "
            f"(fov_scale={capture_config.undistorted_fov_scale:.2f}, "
            f"resolution_scale={capture_config.undistorted_resolution_scale:.2f})"
        )
    logger.info("-" * 60)

    with driver:
        try:
            driver.setup()
        except DeviceOpenError as e:
            logger.error(f"デバイスを開けませんでした: {e}")
            return 1

        try:
            driver.run(max_frames=args.max_frames)
        except KeyboardInterrupt:
            logger.info("Ctrl+C を受信しました")
    return 0


def main(argv=None):
    """メインエントリポイント。"""
    args = parse_arguments(argv)

    # アプリケーション起動時にルートロガーを初期化
    setup_logger()
    if args.verbose:
        set_log_level(logging.DEBUG)

    sys.exit(run(args))


if __name__ == "__main__":
    main()
