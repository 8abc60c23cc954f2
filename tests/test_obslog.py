import io
import json
import logging
import unittest


class TestJsonlLogging(unittest.TestCase):
    def test_line_carries_correlation_extras(self) -> None:
        from awayrelay.util.obslog import JsonlFormatter

        fmt = JsonlFormatter(component="service")
        record = logging.LogRecord("awayrelay.router", logging.WARNING, __file__, 1, "[route] lost", None, None)
        record.target_id = "%3"
        record.category = "permission"
        record.channel = ""
        doc = json.loads(fmt.format(record))
        self.assertEqual(doc["component"], "service")
        self.assertEqual(doc["level"], "WARNING")
        self.assertEqual(doc["logger"], "awayrelay.router")
        self.assertEqual(doc["target_id"], "%3")
        self.assertEqual(doc["category"], "permission")
        self.assertNotIn("channel", doc)
        self.assertTrue(doc["ts"].endswith("Z"))

    def test_only_correlation_keys_are_lifted(self) -> None:
        from awayrelay.util.obslog import CORRELATION_KEYS, JsonlFormatter

        record = logging.LogRecord("awayrelay.bridge", logging.INFO, __file__, 1, "sent", None, None)
        record.session = "claude-a"
        record.operator_id = 42
        doc = json.loads(JsonlFormatter(component="service").format(record))
        self.assertNotIn("session", doc)
        self.assertEqual(doc["operator_id"], "42")
        self.assertIn("operator_id", CORRELATION_KEYS)

    def test_exception_is_rendered(self) -> None:
        from awayrelay.util.obslog import JsonlFormatter

        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = logging.LogRecord("awayrelay.x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        doc = json.loads(JsonlFormatter(component="service").format(record))
        self.assertIn("RuntimeError: boom", doc["exc"])

    def test_setup_installs_one_handler(self) -> None:
        from awayrelay.util.obslog import JsonlFormatter, setup_root_json_logging

        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            buf = io.StringIO()
            setup_root_json_logging(component="test-a", level="DEBUG", stream=buf, force=True)
            setup_root_json_logging(component="test-a", level="DEBUG", stream=buf)
            ours = [h for h in root.handlers if isinstance(h.formatter, JsonlFormatter)]
            self.assertEqual(len(ours), 1)
            logging.getLogger("awayrelay.test").info("hello", extra={"op": "selftest"})
            line = json.loads(buf.getvalue().strip().splitlines()[-1])
            self.assertEqual(line["msg"], "hello")
            self.assertEqual(line["op"], "selftest")
        finally:
            for h in list(root.handlers):
                root.removeHandler(h)
            for h in saved_handlers:
                root.addHandler(h)
            root.setLevel(saved_level)


if __name__ == "__main__":
    unittest.main()
