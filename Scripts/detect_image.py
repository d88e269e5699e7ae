import argparse
import logging
from dataclasses import replace
from pathlib import Path

import cv2

from localdet import (
    DetectionPipelineError,
    PipelineConfig,
    draw_detections,
    filter_for_display,
    load_image,
    load_pipeline,
    load_pipeline_config,
    setup_logging,
)


logger = logging.getLogger("detect_image")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run local ONNX object detection on one image.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument("--config", default=None, help="Pipeline config JSON (values below override it).")
    parser.add_argument("--model", default=None, help="Path to an ONNX model (required without --config).")
    parser.add_argument("--metadata", default=None, help="Optional class names file (names: mapping).")
    parser.add_argument("--imgsz", type=int, default=None, help="Model input size (square), e.g. 640.")
    parser.add_argument("--conf", type=float, default=None, help="Decode-time confidence threshold.")
    parser.add_argument("--display-conf", type=float, default=None, help="Stricter threshold for drawing/printing.")
    parser.add_argument("--iou", type=float, default=None, help="Enable overlap suppression at this IoU.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--out", default=None, help="Optional output path to save the visualization.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG / INFO / WARNING / ERROR.")
    parser.add_argument("--log-file", default=None, help="Optional log file path.")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    if args.config:
        cfg = load_pipeline_config(Path(args.config))
    elif args.model:
        cfg = PipelineConfig(model_path=args.model)
    else:
        parser.error("either --config or --model is required")

    overrides = {}
    if args.model:
        overrides["model_path"] = args.model
    if args.metadata:
        overrides["metadata_path"] = args.metadata
    if args.imgsz is not None:
        overrides["model_width"] = overrides["model_height"] = int(args.imgsz)
    if args.conf is not None:
        overrides["confidence_threshold"] = args.conf
    if args.display_conf is not None:
        overrides["display_threshold"] = args.display_conf
    if args.iou is not None:
        overrides["iou_threshold"] = args.iou
    if args.onnx_providers:
        overrides["providers"] = tuple(p.strip() for p in str(args.onnx_providers).split(",") if p.strip())
    cfg = replace(cfg, **overrides)

    try:
        img = load_image(args.image)
        with load_pipeline(cfg) as pipeline:
            detections = pipeline(img)
    except DetectionPipelineError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1

    shown = filter_for_display(detections, cfg.display_threshold)
    logger.info("%d detections (%d above display threshold %.2f)", len(detections), len(shown), cfg.display_threshold)
    for det in shown:
        print(det.class_name, f"{det.score:.3f}", tuple(round(v, 1) for v in det.as_xywh()))

    if args.out or args.show:
        if img.ndim != 3 or img.shape[2] != 3:
            img = cv2.imread(args.image, cv2.IMREAD_COLOR)
        vis = draw_detections(img, detections, score_threshold=cfg.display_threshold)
        if args.out:
            ok = cv2.imwrite(args.out, vis)
            if not ok:
                raise RuntimeError(f"Failed to write output image: {args.out}")
        if args.show:
            cv2.imshow("detections", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
