import json
import tempfile
import unittest
from pathlib import Path

from localdet.config import PipelineConfig, load_pipeline_config


class TestPipelineConfig(unittest.TestCase):
    def _write_config(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "pipeline.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        path = self._write_config(
            {
                "schema_version": 1,
                "model_path": "models/detector.onnx",
                "model_width": 416,
                "model_height": 416,
                "confidence_threshold": 0.4,
                "display_threshold": 0.6,
                "iou_threshold": 0.5,
                "providers": "CUDAExecutionProvider, CPUExecutionProvider",
                "num_threads": 2,
                "graph_optimization": "basic",
                "notes": "test",
            }
        )
        cfg = load_pipeline_config(path)
        self.assertIsInstance(cfg, PipelineConfig)
        self.assertEqual(cfg.model_path, "models/detector.onnx")
        self.assertEqual((cfg.model_width, cfg.model_height), (416, 416))
        self.assertEqual(cfg.confidence_threshold, 0.4)
        self.assertEqual(cfg.display_threshold, 0.6)
        self.assertEqual(cfg.iou_threshold, 0.5)
        self.assertEqual(cfg.providers, ("CUDAExecutionProvider", "CPUExecutionProvider"))
        self.assertEqual(cfg.num_threads, 2)
        self.assertEqual(cfg.graph_optimization, "basic")

    def test_defaults(self) -> None:
        cfg = load_pipeline_config(self._write_config({"model_path": "m.onnx"}))
        self.assertEqual((cfg.model_width, cfg.model_height), (640, 640))
        self.assertEqual(cfg.confidence_threshold, 0.25)
        self.assertIsNone(cfg.iou_threshold)
        self.assertIsNone(cfg.providers)
        self.assertEqual(cfg.graph_optimization, "all")

    def test_unknown_keys_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline_config(self._write_config({"model_path": "m.onnx", "extra": 1}))

    def test_missing_model_path_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline_config(self._write_config({"confidence_threshold": 0.5}))

    def test_invalid_values_rejected(self) -> None:
        for payload in (
            {"model_path": "m.onnx", "schema_version": 2},
            {"model_path": "m.onnx", "confidence_threshold": 1.5},
            {"model_path": "m.onnx", "confidence_threshold": True},
            {"model_path": "m.onnx", "model_width": 16},
            {"model_path": "m.onnx", "model_width": 640.0},
            {"model_path": "m.onnx", "iou_threshold": 0},
            {"model_path": "m.onnx", "graph_optimization": "max"},
            {"model_path": "m.onnx", "providers": [1, 2]},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    load_pipeline_config(self._write_config(payload))

    def test_invalid_json_and_missing_file(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_pipeline_config(path)
        with self.assertRaises(ValueError):
            load_pipeline_config(self._write_config(["model_path"]))
        with self.assertRaises(FileNotFoundError):
            load_pipeline_config(Path(tmpdir.name) / "missing.json")


if __name__ == "__main__":
    unittest.main()
