import argparse
import logging
from dataclasses import replace
from pathlib import Path

import cv2

from .config import EstimatorConfig, FrameConfig, load_config
from .pipeline import generate_synthetic_cones, process_frame
from .runtime import ImageSequenceSource, SteeringLog, VideoFrameSource, run


def _load(args: argparse.Namespace) -> EstimatorConfig:
    config = load_config(args.config) if args.config else EstimatorConfig()
    if getattr(args, "width", None) or getattr(args, "height", None):
        frame = FrameConfig(
            width=args.width or config.frame.width,
            height=args.height or config.frame.height,
        )
        config = replace(config, frame=frame)
    return config


def _cmd_generate(args: argparse.Namespace) -> int:
    a = (args.a_x, args.y) if args.a_x is not None else None
    b = (args.b_x, args.y) if args.b_x is not None else None
    img = generate_synthetic_cones(width=args.width, height=args.height, a_center=a, b_center=b)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(args.output), img)
    print(f"Wrote synthetic image to {args.output}")
    return 0


def _cmd_detect(args: argparse.Namespace) -> int:
    img = cv2.imread(str(args.image))
    if img is None:
        raise FileNotFoundError(f"Could not read image: {args.image}")

    config = _load(args)
    res = process_frame(img, config=config)

    args.output.parent.mkdir(parents=True, exist_ok=True)
    cv2.imwrite(str(args.output), res.annotated)
    print(f"Wrote overlay to {args.output}")

    if args.save_masks:
        args.save_masks.mkdir(parents=True, exist_ok=True)
        cv2.imwrite(str(args.save_masks / "mask_blue.png"), res.detection.mask_a)
        cv2.imwrite(str(args.save_masks / "mask_yellow.png"), res.detection.mask_b)
        print(f"Wrote masks to {args.save_masks}")

    print(f"Markers: {res.steering.case.value}")
    print(f"Steering angle: {res.angle:.4f}")
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load(args)
    # Only enforce a frame size when one was asked for.
    expected = config.frame if (args.config or args.width or args.height) else None

    if args.images:
        source = ImageSequenceSource(args.images, expected)
    elif args.video:
        source = VideoFrameSource(str(args.video), expected)
    else:
        source = VideoFrameSource(args.camera, expected)

    try:
        with SteeringLog(args.log, group=config.runtime.group) as sink:
            state = run(source, sink, config, show=args.show, max_frames=args.max_frames)
    finally:
        source.release()

    print(f"Final steering angle: {state.angle:.4f}")
    return 0


def main() -> int:
    p = argparse.ArgumentParser(description="Cone-based steering estimator (OpenCV)")
    p.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    g = sub.add_parser("generate", help="Generate a synthetic cone frame")
    g.add_argument("--output", type=Path, required=True)
    g.add_argument("--width", type=int, default=640)
    g.add_argument("--height", type=int, default=480)
    g.add_argument("--a-x", type=int, default=500, help="x of the blue cone centre")
    g.add_argument("--b-x", type=int, default=140, help="x of the yellow cone centre")
    g.add_argument("--y", type=int, default=300, help="y of both cone centres")
    g.set_defaults(func=_cmd_generate)

    d = sub.add_parser("detect", help="Estimate the steering angle for one image")
    d.add_argument("--image", type=Path, required=True)
    d.add_argument("--output", type=Path, default=Path("outputs/overlay.png"))
    d.add_argument("--config", type=Path, help="YAML calibration file")
    d.add_argument("--save-masks", type=Path, help="Optional directory to save colour masks")
    d.set_defaults(func=_cmd_detect)

    r = sub.add_parser("run", help="Estimate steering over a stream of frames")
    src = r.add_mutually_exclusive_group(required=True)
    src.add_argument("--video", type=Path, help="Video file")
    src.add_argument("--camera", type=int, help="Camera index")
    src.add_argument("--images", type=Path, nargs="+", help="Image files, processed in order")
    r.add_argument("--config", type=Path, help="YAML calibration file")
    r.add_argument("--width", type=int, help="Expected frame width")
    r.add_argument("--height", type=int, help="Expected frame height")
    r.add_argument("--log", type=Path, default=Path("outputs/steering.txt"))
    r.add_argument("--show", action="store_true", help="Display annotated frames")
    r.add_argument("--max-frames", type=int, default=None)
    r.set_defaults(func=_cmd_run)

    args = p.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
