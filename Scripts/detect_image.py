from __future__ import annotations

import argparse

import cv2

from yolo_gpu_kit import draw_display_boxes, load_pipeline, map_to_display


def read_image(path: str):
    img = cv2.imread(path)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return img


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the detection pipeline once on a single image.")
    parser.add_argument("image")
    parser.add_argument("--model", default="models/yolov8n.onnx")
    parser.add_argument("--labels", default="models/classes.txt")
    parser.add_argument("--device", default="auto")
    parser.add_argument("--no-show", action="store_true")
    args = parser.parse_args()

    image = read_image(args.image)
    pipeline = load_pipeline(args.model, args.labels, device=args.device)
    try:
        prep = pipeline.preprocess(image)
        result = pipeline.detect(prep.blob)
    finally:
        pipeline.close()

    h, w = image.shape[:2]
    mapping = pipeline.mapping_for((w, h))
    boxes = map_to_display(result, mapping, pipeline.labels)
    for box in boxes:
        print(box.label, f"{box.score:.3f}", mapping.to_pixels(box.center_x, box.center_y, box.width, box.height))

    if not args.no_show:
        vis = draw_display_boxes(image, boxes, mapping, show_score=True)
        cv2.imshow("detections", vis)
        cv2.waitKey(0)
        cv2.destroyAllWindows()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
