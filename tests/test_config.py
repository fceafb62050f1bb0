import os
import tempfile
import textwrap
import unittest
from types import SimpleNamespace
from unittest import mock

from core.config import API_TOKEN_ENV, ConfigError, load_config, validate_config


def _make_cfg():
    return SimpleNamespace(
        runtime=SimpleNamespace(
            log_level="info", max_runtime_s=0.0, result_hold_s=3.0, history_size=20
        ),
        camera=SimpleNamespace(
            type="opencv",
            device_index=0,
            width=640,
            height=480,
            fps=15,
            buffer_size=1,
            open_retries=3,
            retry_delay_s=2.0,
            read_fail_limit=30,
            image_dir="",
        ),
        monitor=SimpleNamespace(poll_interval_s=5.0, log_every=5, startup_nudge_s=1.0),
        capture=SimpleNamespace(settle_ms=300),
        backend=SimpleNamespace(
            base_url="http://127.0.0.1:5000/api",
            timeout_s=8.0,
            events_path="/attendance-events",
            latest_event_path="/attendance-events/latest/{employee_id}",
            work_hours_path="/work-hours/{employee_id}",
        ),
        recovery=SimpleNamespace(verify_enabled=True, verify_window_s=60.0),
        auto=SimpleNamespace(
            mode="manual", default_event_type="checkin", cooldown_ms=3000.0, descriptor_ttl_s=3.0
        ),
        trigger=SimpleNamespace(
            tcp=SimpleNamespace(port=9100, ip_whitelist=[], max_line_bytes=65536)
        ),
        hmi=SimpleNamespace(port=8000),
    )


MAIN_YAML = """\
runtime:
  result_hold_s: 2.5
camera:
  type: mock
  common:
    width: 320
  mock:
    image_dir: faces
  opencv:
    device_index: 3
detect:
  config_file: detect_yunet.yaml
trigger:
  tcp:
    enabled: true
    port: 9200
"""

DETECT_YAML = """\
detector_model: ../models/det.onnx
recognizer_model: /abs/rec.onnx
score_threshold: 0.8
"""


class TestConfigValidation(unittest.TestCase):
    def test_valid_config_passes(self):
        validate_config(_make_cfg())

    def test_invalid_values_raise_config_error(self):
        cases = [
            ("runtime.history_size", "runtime", {"history_size": 0}),
            ("camera.type", "camera", {"type": "hik"}),
            ("camera.image_dir", "camera", {"type": "mock"}),
            ("capture.settle_ms", "capture", {"settle_ms": 10000}),
            ("backend.base_url", "backend", {"base_url": "ftp://x"}),
            ("backend.latest_event_path", "backend", {"latest_event_path": "/latest"}),
            ("backend.events_path", "backend", {"events_path": "attendance"}),
            ("auto.mode", "auto", {"mode": "sometimes"}),
            ("auto.default_event_type", "auto", {"default_event_type": "lunch"}),
            ("trigger.tcp.port", "trigger.tcp", {"port": 70000}),
            ("trigger.tcp.ip_whitelist", "trigger.tcp", {"ip_whitelist": "10.0.0.1"}),
            ("hmi.port", "hmi", {"port": 0}),
        ]
        for expected_name, target, patch in cases:
            with self.subTest(field=expected_name):
                cfg = _make_cfg()
                obj = cfg
                for part in target.split("."):
                    obj = getattr(obj, part)
                for k, v in patch.items():
                    setattr(obj, k, v)
                with self.assertRaises(ConfigError) as cm:
                    validate_config(cfg)
                self.assertIn(expected_name, str(cm.exception))


class TestConfigLoader(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name
        self._write("detect_yunet.yaml", DETECT_YAML)

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, name: str, text: str):
        with open(os.path.join(self.dir, name), "w", encoding="utf-8") as f:
            f.write(textwrap.dedent(text))

    def test_loads_sections_and_selected_camera_block(self):
        self._write("main_kiosk.yaml", MAIN_YAML)
        with mock.patch.dict(os.environ, {API_TOKEN_ENV: "secret"}):
            cfg = load_config(self.dir)
        self.assertEqual(cfg.runtime.result_hold_s, 2.5)
        self.assertEqual(cfg.camera.type, "mock")
        self.assertEqual(cfg.camera.width, 320)
        self.assertEqual(cfg.camera.image_dir, "faces")
        # Blocks for the other camera type are ignored.
        self.assertEqual(cfg.camera.device_index, 0)
        self.assertTrue(cfg.trigger.tcp.enabled)
        self.assertEqual(cfg.trigger.tcp.port, 9200)
        self.assertEqual(cfg.backend.api_token, "secret")
        self.assertEqual(cfg.auto.mode, "manual")

    def test_model_paths_resolve_relative_to_detect_file(self):
        self._write("main_kiosk.yaml", MAIN_YAML)
        cfg = load_config(self.dir)
        expected = os.path.normpath(os.path.join(os.path.abspath(self.dir), "..", "models", "det.onnx"))
        self.assertEqual(cfg.detect_params["detector_model"], expected)
        self.assertEqual(cfg.detect_params["recognizer_model"], "/abs/rec.onnx")
        self.assertEqual(cfg.detect_params["score_threshold"], 0.8)

    def test_rejects_malformed_files(self):
        cases = [
            ("unknown section", "modbus:\n  port: 502\ndetect:\n  config_file: detect_yunet.yaml\n", "Unknown section"),
            ("unknown field", "runtime:\n  save_dir: x\ndetect:\n  config_file: detect_yunet.yaml\n", "runtime.save_dir"),
            ("flat camera key", "camera:\n  width: 10\ndetect:\n  config_file: detect_yunet.yaml\n", "camera.width"),
            ("unknown trigger", "trigger:\n  modbus: {}\ndetect:\n  config_file: detect_yunet.yaml\n", "trigger.modbus"),
            ("missing detect file", "detect:\n  config_file: nope.yaml\n", "not found"),
            ("no detect file", "runtime: {}\n", "detect.config_file"),
        ]
        for label, text, needle in cases:
            with self.subTest(case=label):
                self._write("main_kiosk.yaml", text)
                with self.assertRaises(ConfigError) as cm:
                    load_config(self.dir)
                self.assertIn(needle, str(cm.exception))

    def test_requires_exactly_one_main_file(self):
        with self.assertRaises(ConfigError):
            load_config(self.dir)
        self._write("main_a.yaml", MAIN_YAML)
        self._write("main_b.yaml", MAIN_YAML)
        with self.assertRaises(ConfigError) as cm:
            load_config(self.dir)
        self.assertIn("exactly one", str(cm.exception))

    def test_shipped_config_is_valid(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
        cfg = load_config(os.path.join(repo_root, "config"))
        validate_config(cfg)
        self.assertEqual(cfg.detect.impl, "yunet")


if __name__ == "__main__":
    unittest.main()
