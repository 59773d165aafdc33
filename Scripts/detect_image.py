from __future__ import annotations

import argparse
import asyncio
import logging
import time

import cv2

from detect_kit import (
    DetectionPipeline,
    LatestRequestGate,
    PipelineConfig,
    draw_detections,
    load_class_names,
    load_models,
    load_pipeline_config,
)
from detect_kit.log import setup_logging


logger = logging.getLogger("detect_image")


def read_image(path: str):
    img = cv2.imread(path, cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return img


def _build_config(args: argparse.Namespace) -> PipelineConfig:
    base = load_pipeline_config(args.config) if args.config else PipelineConfig()
    shape = base.model_input_shape
    if args.imgsz is not None:
        shape = (1, 3, int(args.imgsz), int(args.imgsz))
    return PipelineConfig(
        model_input_shape=shape,
        topk=base.topk if args.topk is None else int(args.topk),
        iou_threshold=base.iou_threshold if args.iou is None else float(args.iou),
        score_threshold=base.score_threshold if args.conf is None else float(args.conf),
    )


async def _run(args: argparse.Namespace) -> int:
    config = _build_config(args)
    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    models = load_models(
        args.model,
        args.nms_model,
        onnx_providers=onnx_providers,
        num_threads=args.threads,
        warmup_shape=config.model_input_shape,
    )
    class_names = load_class_names(args.labels) if args.labels else None

    upload_start = time.perf_counter()
    image = read_image(args.image)
    gate = LatestRequestGate(DetectionPipeline(models, config=config))
    try:
        result = await gate.submit(image)
    finally:
        models.close()

    if result is None:
        logger.warning("No result (request superseded)")
        return 1

    total_ms = (time.perf_counter() - upload_start) * 1000.0
    for det in result.detections:
        name = class_names.get(det.class_id, str(det.class_id)) if class_names else str(det.class_id)
        x1, y1, x2, y2 = det.as_xyxy()
        print(f"{name:<16} {det.score:.3f}  ({x1:.1f}, {y1:.1f}) - ({x2:.1f}, {y2:.1f})")
    print(f"detections={len(result.detections)} image={result.image_size[0]}x{result.image_size[1]}")
    print(f"Total time (read to detection): {total_ms:.1f}ms  pipeline: {result.elapsed_ms:.1f}ms")

    if args.out:
        vis = draw_detections(image, result.detections, class_names=class_names, show_score=True)
        if not cv2.imwrite(args.out, vis):
            raise RuntimeError(f"Could not write overlay image: {args.out}")
        print(f"Wrote overlay: {args.out}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect objects in one image with a detector + NMS ONNX model pair.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--model", default="model/yolov8n.onnx", help="Detector ONNX model.")
    parser.add_argument(
        "--nms-model",
        default=None,
        help="NMS ONNX model (inputs boxes/scores/config, output selected). Omit to run NMS on the CPU.",
    )
    parser.add_argument("--labels", default=None, help="Class names (.json list or metadata.yaml).")
    parser.add_argument("--config", default=None, help="JSON pipeline config (CLI flags override it).")
    parser.add_argument("--imgsz", type=int, default=None, help="Square model input size (e.g., 640).")
    parser.add_argument("--topk", type=int, default=None, help="Max detections kept after NMS.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--conf", type=float, default=None, help="Score threshold (inclusive).")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--threads", type=int, default=None, help="ONNX Runtime intra-op threads (1 = single-threaded).")
    parser.add_argument("--out", default=None, help="Write the image with boxes drawn to this path.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG prints per-stage timings.")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    args = parser.parse_args()

    if args.imgsz is not None and args.imgsz < 32:
        raise ValueError("--imgsz must be >= 32")
    if args.threads is not None and args.threads < 1:
        raise ValueError("--threads must be >= 1")

    setup_logging(args.log_level, args.log_file)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
