import os
import unittest
from importlib import reload
from unittest.mock import patch

from fastapi.testclient import TestClient

import travel_timeline.app as app_module
from travel_timeline import config
from travel_timeline.upload_validation import load_upload_limits


class TestConfigLoaders(unittest.TestCase):
    def test_defaults_when_environment_is_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            limits = load_upload_limits()
            self.assertEqual(limits.max_size_bytes, 25 * 1024 * 1024)
            self.assertIn("application/pdf", limits.allowed_types)
            self.assertEqual(config.load_parse_max_bytes(), 10 * 1024 * 1024)
            self.assertEqual(config.load_llm_timeout_seconds(), 30.0)
            self.assertEqual(config.load_log_level(), "INFO")

    def test_allowed_types_are_normalized(self):
        with patch.dict(os.environ, {"TIMELINE_ALLOWED_UPLOAD_TYPES": " Image/PNG , *, "}):
            limits = load_upload_limits()

        self.assertEqual(limits.allowed_types, frozenset({"image/png", "*"}))
        self.assertTrue(limits.accepts_all_types)

    def test_malformed_numbers_fall_back_to_defaults(self):
        with patch.dict(
            os.environ,
            {
                "TIMELINE_MAX_UPLOAD_BYTES": "lots",
                "TIMELINE_PARSE_MAX_BYTES": "-5",
                "TIMELINE_LLM_TIMEOUT_SECONDS": "soon",
            },
        ):
            self.assertEqual(config.load_max_upload_bytes(), config.DEFAULT_MAX_UPLOAD_BYTES)
            self.assertEqual(config.load_parse_max_bytes(), config.DEFAULT_PARSE_MAX_BYTES)
            self.assertEqual(config.load_llm_timeout_seconds(), config.DEFAULT_LLM_TIMEOUT_SECONDS)

    def test_configured_numbers_are_used(self):
        with patch.dict(os.environ, {"TIMELINE_MAX_UPLOAD_BYTES": "1024", "TIMELINE_LLM_TIMEOUT_SECONDS": "7.5"}):
            self.assertEqual(config.load_max_upload_bytes(), 1024)
            self.assertEqual(config.load_llm_timeout_seconds(), 7.5)


class TestAppConfig(unittest.TestCase):
    def setUp(self):
        self.original_cors_origins = os.environ.get("TIMELINE_CORS_ALLOWED_ORIGINS")

    def tearDown(self):
        if self.original_cors_origins is None:
            os.environ.pop("TIMELINE_CORS_ALLOWED_ORIGINS", None)
        else:
            os.environ["TIMELINE_CORS_ALLOWED_ORIGINS"] = self.original_cors_origins

        reload(app_module)

    def test_default_cors_allows_local_frontend_origin(self):
        os.environ.pop("TIMELINE_CORS_ALLOWED_ORIGINS", None)
        module = reload(app_module)

        self.assertIn("http://localhost:3000", module.CORS_ALLOWED_ORIGINS)
        self.assertIn("http://127.0.0.1:3000", module.CORS_ALLOWED_ORIGINS)

        cors_middleware_entries = [
            entry
            for entry in module.app.user_middleware
            if entry.cls.__name__ == "CORSMiddleware"
        ]
        self.assertTrue(cors_middleware_entries)

    def test_cors_origins_are_configurable(self):
        os.environ["TIMELINE_CORS_ALLOWED_ORIGINS"] = "https://trips.example.com, "
        module = reload(app_module)

        self.assertEqual(module.CORS_ALLOWED_ORIGINS, ["https://trips.example.com"])

    def test_upload_limits_come_from_environment_at_startup(self):
        with patch.dict(os.environ, {"TIMELINE_MAX_UPLOAD_BYTES": "2048"}):
            module = reload(app_module)

        self.assertEqual(module.app.state.document_store.limits.max_size_bytes, 2048)

    def test_root_logging_is_configured_at_startup_not_import(self):
        with patch("logging.basicConfig") as mocked_basic_config:
            module = reload(app_module)
            mocked_basic_config.assert_not_called()

            with patch.dict(os.environ, {"TIMELINE_LOG_LEVEL": "DEBUG"}):
                with TestClient(module.app) as client:
                    self.assertEqual(client.get("/health").status_code, 200)

        mocked_basic_config.assert_called_once()
        self.assertEqual(mocked_basic_config.call_args.kwargs["level"], "DEBUG")


if __name__ == "__main__":
    unittest.main()
