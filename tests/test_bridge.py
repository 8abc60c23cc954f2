import unittest
from typing import Any, Dict, List, Optional, Sequence, Tuple

WAITING = "Do you want to proceed?\n  1. Yes\n  2. No"
IDLE = "all done\nuser@host:~/proj$ "


class _FakeAdapter:
    platform = "fake"

    def __init__(self, *, reject_html: bool = False) -> None:
        self.reject_html = reject_html
        self.messages: List[Tuple[str, bool]] = []
        self.keyboards: List[Tuple[str, List[Tuple[str, str]]]] = []
        self.answers: List[Tuple[str, str]] = []
        self.edits: List[Tuple[int, str]] = []
        self.deleted: List[int] = []
        self.files: List[Tuple[str, bytes, str]] = []

    def connect(self) -> str:
        return "relay_bot"

    def disconnect(self) -> None:
        pass

    def poll(self) -> List[Dict[str, Any]]:
        return []

    def send_message(self, chat_id: str, text: str, *, html: bool = True) -> bool:
        if html and self.reject_html:
            return False
        self.messages.append((text, html))
        return True

    def send_keyboard(self, chat_id: str, text: str, buttons: Sequence[Tuple[str, str]]) -> bool:
        self.keyboards.append((text, list(buttons)))
        return True

    def answer_callback(self, callback_id: str, text: str = "") -> bool:
        self.answers.append((callback_id, text))
        return True

    def edit_message(self, chat_id: str, message_id: int, text: str) -> bool:
        self.edits.append((message_id, text))
        return True

    def delete_message(self, chat_id: str, message_id: int) -> bool:
        self.deleted.append(message_id)
        return True

    def send_file(self, chat_id: str, *, data: bytes, filename: str, caption: str = "") -> bool:
        self.files.append((filename, data, caption))
        return True

    def texts(self) -> List[str]:
        return [t for t, _ in self.messages]


class _FakeTmux:
    def __init__(self, panes: Dict[str, Dict[str, str]], *, fail_inject: bool = False) -> None:
        self.panes = panes
        self.fail_inject = fail_inject
        self.injected: List[Tuple[str, str]] = []

    def list_sessions(self, prefix: str):
        from awayrelay.runners.tmux import SessionInfo

        return [SessionInfo(name=s) for s in self.panes if s.startswith(prefix)]

    def list_panes(self, session: str) -> List[str]:
        return list(self.panes.get(session, {}))

    def project_label(self, pane: str) -> Optional[str]:
        return None

    def capture(self, pane: str, lines: int) -> str:
        for sess in self.panes.values():
            if pane in sess:
                return sess[pane]
        from awayrelay.runners.tmux import TmuxError

        raise TmuxError(f"can't find pane {pane}")

    def send_keys(self, pane: str, text: str) -> None:
        if self.fail_inject:
            from awayrelay.runners.tmux import TmuxError

            raise TmuxError(f"can't find pane {pane}")
        self.injected.append((pane, text))

    def list_sessions_raw(self) -> str:
        return "\n".join(f"{s}: 1 windows" for s in self.panes)


OPERATOR = 42


def _bridge(fake: _FakeTmux, adapter: Optional[_FakeAdapter] = None, presence=None):
    from awayrelay.kernel.targets import TargetResolver
    from awayrelay.ports.im.bridge import RemoteBridge

    resolver = TargetResolver(
        session_prefix="claude-",
        capture=fake.capture,
        list_sessions=fake.list_sessions,
        list_panes=fake.list_panes,
        project_label=fake.project_label,
    )
    return RemoteBridge(
        adapter or _FakeAdapter(),
        operator_id=OPERATOR,
        resolver=resolver,
        presence=presence,
        inject=fake.send_keys,
        capture=fake.capture,
        list_sessions_raw=fake.list_sessions_raw,
    )


def _msg(text: str, sender: int = OPERATOR) -> Dict[str, Any]:
    return {"kind": "message", "chat_id": str(sender), "from_user_id": sender, "text": text, "message_id": 10}


def _cb(data: str, sender: int = OPERATOR, message_id: int = 77) -> Dict[str, Any]:
    return {
        "kind": "callback",
        "chat_id": str(sender),
        "from_user_id": sender,
        "text": data,
        "message_id": message_id,
        "callback_id": "cb1",
    }


class TestOperatorGate(unittest.IsolatedAsyncioTestCase):
    async def test_non_operator_is_ignored(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": WAITING}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/y", sender=7))
        await bridge.handle_update(_cb("sel:abcd:%1", sender=7))
        self.assertEqual(fake.injected, [])
        self.assertEqual(bridge.adapter.messages, [])
        self.assertEqual(bridge.adapter.answers, [])


class TestReplies(unittest.IsolatedAsyncioTestCase):
    async def test_approve_single_waiting(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": WAITING, "%2": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/y"))
        self.assertEqual(fake.injected, [("%1", "y")])
        self.assertIn("✓ Sent to claude-a [%1]", bridge.adapter.texts())

    async def test_nothing_waiting(self) -> None:
        from awayrelay.ports.im.commands import NOTHING_WAITING_TEXT

        fake = _FakeTmux({"claude-a": {"%1": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/n"))
        self.assertEqual(fake.injected, [])
        self.assertEqual(bridge.adapter.texts(), [NOTHING_WAITING_TEXT])

    async def test_multiple_waiting_asks_then_callback_injects(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": WAITING}, "claude-b": {"%2": WAITING}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/select 2"))
        self.assertEqual(fake.injected, [])
        self.assertEqual(len(bridge.adapter.keyboards), 1)
        header, buttons = bridge.adapter.keyboards[0]
        self.assertIn("Multiple panes are waiting", header)
        self.assertEqual([label for label, _ in buttons], ["claude-a [%1]", "claude-b [%2]"])

        data = buttons[1][1]
        await bridge.handle_update(_cb(data))
        self.assertEqual(fake.injected, [("%2", "2")])
        self.assertEqual(bridge.adapter.answers[-1], ("cb1", "✓ Message sent!"))
        self.assertEqual(bridge.adapter.edits, [(77, '✓ Sent to pane %2:\n"2"')])
        self.assertEqual(len(bridge.pending), 0)

        # the same button a second time finds nothing pending
        await bridge.handle_update(_cb(data))
        self.assertEqual(len(fake.injected), 1)

    async def test_stale_token_is_expired(self) -> None:
        from awayrelay.ports.im.commands import EXPIRED_TEXT

        fake = _FakeTmux({"claude-a": {"%1": WAITING}, "claude-b": {"%2": WAITING}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("first"))
        old = bridge.adapter.keyboards[0][1][0][1]
        await bridge.handle_update(_msg("second"))
        await bridge.handle_update(_cb(old))
        self.assertEqual(fake.injected, [])
        self.assertEqual(bridge.adapter.answers, [("cb1", EXPIRED_TEXT)])

        fresh = bridge.adapter.keyboards[1][1][0][1]
        await bridge.handle_update(_cb(fresh))
        self.assertEqual(fake.injected, [("%1", "second")])

    async def test_select_requires_number(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": WAITING}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/select two"))
        self.assertEqual(fake.injected, [])
        self.assertTrue(bridge.adapter.texts()[0].startswith("Usage: /select"))


class TestFreeText(unittest.IsolatedAsyncioTestCase):
    async def test_waiting_pane_gets_the_answer(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": WAITING, "%2": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("use the second option"))
        self.assertEqual(fake.injected, [("%1", "use the second option")])

    async def test_new_instruction_single_pane(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("run the tests"))
        self.assertEqual(fake.injected, [("%1", "run the tests")])
        self.assertIn("✓ Prompt sent to claude-a [%1]", bridge.adapter.texts())

    async def test_new_instruction_many_panes(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}, "claude-b": {"%2": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("run the tests"))
        self.assertEqual(fake.injected, [])
        header, buttons = bridge.adapter.keyboards[0]
        self.assertEqual(header, "Multiple panes found. Choose where to send your message:")
        self.assertEqual(len(buttons), 2)

    async def test_no_sessions(self) -> None:
        fake = _FakeTmux({"other": {"%1": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("hello"))
        self.assertEqual(bridge.adapter.texts(), ["No claude-* tmux sessions found."])


class TestTargetCommand(unittest.IsolatedAsyncioTestCase):
    async def test_explicit_target_skips_waiting_check(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/target %9 yes please"))
        self.assertEqual(fake.injected, [("%9", "yes please")])
        self.assertIn("✓ Sent to pane %9", bridge.adapter.texts())

    async def test_failure_is_reported(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}}, fail_inject=True)
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/target %9 y"))
        self.assertTrue(bridge.adapter.texts()[0].startswith("✗ Failed to send to pane %9"))

    async def test_usage(self) -> None:
        fake = _FakeTmux({})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/target %9"))
        self.assertTrue(bridge.adapter.texts()[0].startswith("Usage: /target"))


class TestOutbound(unittest.IsolatedAsyncioTestCase):
    async def test_html_rejection_falls_back_to_plain(self) -> None:
        from awayrelay.contracts.v1 import NotifyEvent

        adapter = _FakeAdapter(reject_html=True)
        bridge = _bridge(_FakeTmux({}), adapter)
        ok = await bridge.notify(NotifyEvent.model_validate({"hook_event_name": "Stop"}))
        self.assertTrue(ok)
        self.assertEqual(len(adapter.messages), 1)
        self.assertFalse(adapter.messages[0][1])

    async def test_long_text_is_chunked_in_order(self) -> None:
        adapter = _FakeAdapter()
        bridge = _bridge(_FakeTmux({}), adapter)
        text = "\n".join(f"line {i:05d}" for i in range(1000))
        await bridge.send_text(text, html=False)
        self.assertGreater(len(adapter.messages), 1)
        self.assertTrue(all(len(t) <= 4096 for t in adapter.texts()))
        self.assertEqual("\n".join(adapter.texts()), text)


class TestViews(unittest.IsolatedAsyncioTestCase):
    async def test_unknown_and_help(self) -> None:
        bridge = _bridge(_FakeTmux({}))
        await bridge.handle_update(_msg("/frobnicate"))
        await bridge.handle_update(_msg("/help"))
        texts = bridge.adapter.texts()
        self.assertTrue(texts[0].startswith("Unknown command."))
        self.assertIn("/status", texts[1])

    async def test_status_single_pane(self) -> None:
        from awayrelay.kernel.presence import PresenceMonitor

        presence = PresenceMonitor(mode="manual", manual_away=True)
        fake = _FakeTmux({"claude-a": {"%1": IDLE}})
        bridge = _bridge(fake, presence=presence)
        await bridge.handle_update(_msg("/status"))
        texts = bridge.adapter.texts()
        self.assertEqual(texts[0], "Presence: Away (manual)")
        self.assertIn("all done", texts[1])

    async def test_large_capture_sent_as_complete_pre_blocks(self) -> None:
        screen = "\n".join(f"<tr> {i} & more" for i in range(600)) + "\nuser@host:~/proj$ "
        fake = _FakeTmux({"claude-a": {"%1": screen}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/status"))
        captures = [t for t in bridge.adapter.texts() if "<pre>" in t]
        self.assertGreater(len(captures), 1)
        for text in captures:
            self.assertTrue(text.startswith("<b>claude-a (claude-a) [%1]:</b>\n<pre>"))
            self.assertTrue(text.endswith("</pre>"))
            self.assertLessEqual(len(text), 4096)
        self.assertTrue(all(is_html for text, is_html in bridge.adapter.messages if "<pre>" in text))

    async def test_status_many_panes_keyboard_and_callback(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}, "claude-b": {"%2": WAITING}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/status"))
        header, buttons = bridge.adapter.keyboards[0]
        self.assertEqual(header, "Select a pane to view status:")
        self.assertEqual(buttons[-1], ("All panes", "st:__all__"))

        await bridge.handle_update(_cb("st:__all__", message_id=5))
        texts = bridge.adapter.texts()
        self.assertTrue(any("all done" in t for t in texts))
        self.assertTrue(any("Do you want to proceed?" in t for t in texts))
        self.assertEqual(bridge.adapter.deleted, [5])

    async def test_screenshot_sends_text_documents(self) -> None:
        fake = _FakeTmux({"claude-a": {"%1": IDLE}})
        bridge = _bridge(fake)
        await bridge.handle_update(_msg("/screenshot"))
        self.assertEqual(len(bridge.adapter.files), 1)
        filename, data, caption = bridge.adapter.files[0]
        self.assertEqual(filename, "claude-a-1.txt")
        self.assertIn(b"all done", data)
        self.assertEqual(caption, "claude-a [%1]")

    async def test_unknown_callback(self) -> None:
        bridge = _bridge(_FakeTmux({}))
        await bridge.handle_update(_cb("zz:1"))
        self.assertEqual(bridge.adapter.answers, [("cb1", "Unknown action")])


if __name__ == "__main__":
    unittest.main()
