import unittest


class TestNotifyEvent(unittest.TestCase):
    def test_categories(self) -> None:
        from awayrelay.contracts.v1 import NotifyEvent

        def cat(**doc):
            return NotifyEvent.model_validate(doc).category

        self.assertEqual(cat(type="Stop", message="Claude needs your permission"), "stop")
        self.assertEqual(cat(title="Permission needed"), "permission")
        self.assertEqual(cat(message="Please APPROVE the edit"), "permission")
        self.assertEqual(cat(message="Claude is waiting for your input"), "question")
        self.assertEqual(cat(title="Claude has a question"), "question")
        self.assertEqual(cat(message="Session idle"), "generic")
        self.assertEqual(cat(), "generic")

    def test_permission_beats_question(self) -> None:
        from awayrelay.contracts.v1 import classify_event

        self.assertEqual(classify_event("Notification", "Question", "allow this edit?"), "permission")

    def test_kind_aliases_and_unknown_kinds(self) -> None:
        from awayrelay.contracts.v1 import NotifyEvent

        self.assertEqual(NotifyEvent.model_validate({"hook_event_name": "Stop"}).kind, "Stop")
        self.assertEqual(NotifyEvent.model_validate({"type": "Notification"}).kind, "Notification")
        self.assertEqual(NotifyEvent.model_validate({"type": "SubagentStop"}).kind, "Other")
        self.assertEqual(NotifyEvent.model_validate({}).kind, "Notification")

    def test_enrichment_and_unknown_fields(self) -> None:
        from awayrelay.contracts.v1 import NotifyEvent

        ev = NotifyEvent.model_validate(
            {
                "hook_event_name": "Notification",
                "message": "hi",
                "session_id": "abc",
                "cwd": "/home/me/src/webapp/",
                "tmux_pane": "%7",
            }
        )
        self.assertEqual(ev.project, "webapp")
        self.assertEqual(ev.target_id, "%7")
        self.assertIsNone(ev.terminal_context)
        self.assertFalse(hasattr(ev, "session_id"))

        explicit = NotifyEvent.model_validate({"cwd": "/a/b", "project": "named"})
        self.assertEqual(explicit.project, "named")
        self.assertIsNone(NotifyEvent.model_validate({"tmux_pane": ""}).target_id)


if __name__ == "__main__":
    unittest.main()
