from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from statistics import mean
from typing import Dict, List, Optional

from .algorithms import ESTIMATORS
from .errors import CleancutError
from .pipeline import BackgroundRemover, RemoveOptions, download_models
from .sessions.cache import ModelCache, default_cache_root
from .sessions.registry import SESSION_REGISTRY, SessionPool
from .video import OpenCVFrameProcessor, remove_video


def _add_removal_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        default="u2net",
        choices=[name for name in SESSION_REGISTRY if name != "modnet"],
        help="Segmentation model.",
    )
    parser.add_argument(
        "--alpha-matting",
        dest="alpha_matting",
        action="store_true",
        help="Refine edges with trimap-based alpha matting.",
    )
    parser.add_argument(
        "--no-alpha-matting",
        dest="alpha_matting",
        action="store_false",
        help="Use the predicted mask directly as alpha.",
    )
    parser.set_defaults(alpha_matting=None)
    parser.add_argument(
        "--estimator",
        default="closed_form",
        choices=list(ESTIMATORS),
        help="Alpha estimator used with --alpha-matting.",
    )
    parser.add_argument(
        "--fg-threshold",
        type=int,
        default=240,
        help="Mask values above this are definite foreground (0-255).",
    )
    parser.add_argument(
        "--bg-threshold",
        type=int,
        default=10,
        help="Mask values below this are definite background (0-255).",
    )
    parser.add_argument(
        "--erode-size",
        type=int,
        default=10,
        help="Size of the square used to erode the definite regions.",
    )
    parser.add_argument(
        "--only-mask",
        action="store_true",
        help="Write the mask instead of the cutout.",
    )
    parser.add_argument(
        "--post-process-mask",
        action="store_true",
        help="Smooth and rebinarize the mask before use.",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Remove image and video backgrounds locally with ONNX models.",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help=f"Directory used to cache downloaded models (default: {default_cache_root()}).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    image = subparsers.add_parser("image", help="Process a file or a directory of images.")
    image.add_argument("input", type=Path, help="Image file or directory of images.")
    image.add_argument("output", type=Path, help="Output PNG file or directory.")
    _add_removal_arguments(image)
    image.add_argument(
        "--batch-size",
        type=int,
        default=8,
        help="Number of images sent through the pipeline together.",
    )
    image.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite outputs even if the file already exists.",
    )
    image.add_argument(
        "--json",
        dest="json_report",
        type=Path,
        default=None,
        help="Optional path to write a JSON timing report.",
    )

    video = subparsers.add_parser("video", help="Process a video file.")
    video.add_argument("input", type=Path, help="Input video.")
    video.add_argument("output", type=Path, help="Output video (mp4).")
    _add_removal_arguments(video)

    download = subparsers.add_parser("download", help="Pre-fetch models into the cache.")
    download.add_argument(
        "models",
        nargs="*",
        help="Models to fetch (default: all of " + ", ".join(SESSION_REGISTRY) + ").",
    )

    args = parser.parse_args(argv)
    if args.command in ("image", "video") and args.alpha_matting is None:
        parser.error("choose --alpha-matting or --no-alpha-matting")
    return args


def _options(args: argparse.Namespace) -> RemoveOptions:
    return RemoveOptions(
        alpha_matting=args.alpha_matting,
        fg_threshold=args.fg_threshold,
        bg_threshold=args.bg_threshold,
        erode_size=max(0, args.erode_size),
        only_mask=args.only_mask,
        post_process_mask=args.post_process_mask,
        model_name=args.model,
        estimator=args.estimator,
    )


def _run_image(args: argparse.Namespace, sessions: SessionPool) -> None:
    remover = BackgroundRemover(_options(args), sessions=sessions)

    if args.input.is_file():
        result = remover.remove(args.input.read_bytes())
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(result)
        print(f"[+] Wrote {args.output}")
        return

    if not args.input.exists():
        raise SystemExit(f"Input {args.input} does not exist.")

    timings = remover.process_directory(
        args.input,
        args.output,
        overwrite=args.overwrite,
        batch_size=args.batch_size,
    )
    if not timings:
        print("    No images processed (perhaps outputs already exist?).")
        return

    total_time = sum(timings.values())
    avg_time = mean(timings.values())
    print(f"    Processed {len(timings)} images | total {total_time:.2f}s | avg {avg_time:.3f}s")

    if args.json_report:
        report: Dict[str, Dict[str, float]] = {
            args.model: {
                "images": len(timings),
                "total_seconds": total_time,
                "avg_seconds": avg_time,
            }
        }
        args.json_report.parent.mkdir(parents=True, exist_ok=True)
        with args.json_report.open("w", encoding="utf-8") as handle:
            json.dump(report, handle, indent=2)
        print(f"[+] Wrote timing report to {args.json_report}")


def _run_video(args: argparse.Namespace, sessions: SessionPool) -> None:
    if not args.input.is_file():
        raise SystemExit(f"Input video {args.input} does not exist.")

    options = _options(args)
    remover = BackgroundRemover(options, sessions=sessions)
    estimator = remover.matting_engine.estimator if options.alpha_matting else None

    def report(current: int, total: int) -> None:
        print(f"    frames {current}/{total}", end="\r", flush=True)

    output = remove_video(
        OpenCVFrameProcessor(args.input, args.output),
        alpha_matting=options.alpha_matting,
        fg_threshold=options.fg_threshold,
        bg_threshold=options.bg_threshold,
        erode_size=options.erode_size,
        only_mask=options.only_mask,
        post_process_mask=options.post_process_mask,
        session=remover.session,
        estimator=estimator,
        on_progress=report,
    )
    print(f"\n[+] Wrote {output}")


def run(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cache = ModelCache(args.cache_dir) if args.cache_dir else ModelCache()

    try:
        if args.command == "download":
            paths = download_models(args.models, cache=cache)
            for name, path in paths.items():
                print(f"[+] {name}: {path}")
        elif args.command == "image":
            _run_image(args, SessionPool(cache))
        else:
            _run_video(args, SessionPool(cache))
    except (CleancutError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    run()
