import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch


class TestEnrich(unittest.TestCase):
    def test_without_tmux(self) -> None:
        from awayrelay.ports.notify.hook import enrich

        out = enrich({"hook_event_name": "Stop", "cwd": "/work/api/"}, pane="")
        self.assertNotIn("tmux_pane", out)
        self.assertEqual(out["project"], "api")

    def test_with_pane(self) -> None:
        from awayrelay.ports.notify import hook

        with patch.object(hook.tmux, "capture_pane", return_value="Allow once?") as cap, patch.object(
            hook.tmux, "pane_session_name", return_value="claude-api"
        ):
            out = hook.enrich({"project": "given"}, pane="%7")
        cap.assert_called_once_with("%7", 20)
        self.assertEqual(out["tmux_pane"], "%7")
        self.assertEqual(out["terminal_context"], "Allow once?")
        self.assertEqual(out["tmux_session"], "claude-api")
        self.assertEqual(out["project"], "given")


class TestPostEvent(unittest.TestCase):
    def test_bearer_header(self) -> None:
        from awayrelay.ports.notify import hook

        resp = MagicMock()
        with patch.object(hook.requests, "post", return_value=resp) as post:
            ok = hook.post_event({"a": 1}, url="http://127.0.0.1:7677/notify", secret="abc")
        self.assertTrue(ok)
        _, kwargs = post.call_args
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer abc"})
        self.assertEqual(kwargs["json"], {"a": 1})

    def test_connection_error_is_swallowed(self) -> None:
        import requests

        from awayrelay.ports.notify import hook

        with patch.object(hook.requests, "post", side_effect=requests.ConnectionError("refused")):
            self.assertFalse(hook.post_event({}, url="http://127.0.0.1:1/notify", secret=""))

    def test_run_hook_rejects_non_object(self) -> None:
        from awayrelay.ports.notify import hook

        with patch.object(hook, "post_event") as post:
            self.assertFalse(hook.run_hook("[1]"))
            self.assertFalse(hook.run_hook("{oops"))
        post.assert_not_called()

    def test_run_hook_posts_to_configured_port(self) -> None:
        from awayrelay.ports.notify import hook

        saved = {k: os.environ.get(k) for k in ("AWAYRELAY_HOME", "TMUX_PANE", "AWAYRELAY_SECRET")}
        td = tempfile.TemporaryDirectory()
        try:
            os.environ["AWAYRELAY_HOME"] = td.name
            os.environ.pop("TMUX_PANE", None)
            os.environ["AWAYRELAY_SECRET"] = "k"
            with patch.object(hook, "post_event", return_value=True) as post:
                self.assertTrue(hook.run_hook('{"hook_event_name": "Stop", "cwd": "/x/proj"}'))
            args, kwargs = post.call_args
            self.assertEqual(kwargs["url"], "http://127.0.0.1:7677/notify")
            self.assertEqual(kwargs["secret"], "k")
            self.assertEqual(args[0]["project"], "proj")
        finally:
            for k, v in saved.items():
                if v is None:
                    os.environ.pop(k, None)
                else:
                    os.environ[k] = v
            td.cleanup()


if __name__ == "__main__":
    unittest.main()
