import unittest


class TestPlanDeliveries(unittest.TestCase):
    def test_present_permission_goes_local_only(self) -> None:
        from awayrelay.kernel.router import Delivery, RoutingPolicy, plan_deliveries

        plan = plan_deliveries("permission", "present", RoutingPolicy(notify_local_when_present=True, remote_configured=True))
        self.assertEqual(plan.deliveries, (Delivery("local", sound=False),))
        self.assertIsNone(plan.diagnostic)

    def test_present_sound_follows_toggle(self) -> None:
        from awayrelay.kernel.router import RoutingPolicy, plan_deliveries

        plan = plan_deliveries("stop", "present", RoutingPolicy(notify_sound_when_present=True))
        self.assertTrue(plan.deliveries[0].sound)
        none = plan_deliveries("stop", "present", RoutingPolicy(notify_local_when_present=False))
        self.assertEqual(none.deliveries, ())

    def test_away_remote_plus_muted_local(self) -> None:
        from awayrelay.kernel.router import Delivery, RoutingPolicy, plan_deliveries

        policy = RoutingPolicy(
            notify_remote_when_away=True,
            notify_local_when_away=True,
            notify_sound_when_present=True,
            remote_configured=True,
        )
        plan = plan_deliveries("permission", "away", policy)
        self.assertEqual(plan.deliveries, (Delivery("remote"), Delivery("local", sound=False)))
        self.assertIsNone(plan.diagnostic)

    def test_away_unconfigured_remote_is_diagnosed(self) -> None:
        from awayrelay.kernel.router import RoutingPolicy, plan_deliveries

        lost = plan_deliveries(
            "question", "away", RoutingPolicy(notify_remote_when_away=True, notify_local_when_away=False)
        )
        self.assertEqual(lost.deliveries, ())
        self.assertEqual(lost.diagnostic, "lost")

        partial = plan_deliveries(
            "question", "away", RoutingPolicy(notify_remote_when_away=True, notify_local_when_away=True)
        )
        self.assertEqual(partial.channels(), ("local",))
        self.assertEqual(partial.diagnostic, "remote_unconfigured")

    def test_away_remote_disabled_is_not_a_diagnostic(self) -> None:
        from awayrelay.kernel.router import RoutingPolicy, plan_deliveries

        plan = plan_deliveries(
            "generic", "away", RoutingPolicy(notify_remote_when_away=False, notify_local_when_away=False)
        )
        self.assertEqual(plan.deliveries, ())
        self.assertIsNone(plan.diagnostic)


class TestNotificationRouter(unittest.IsolatedAsyncioTestCase):
    def _event(self, **kw):
        from awayrelay.contracts.v1 import NotifyEvent

        doc = {"hook_event_name": "Notification", "message": "Claude needs your permission to use Bash", "tmux_pane": "%1"}
        doc.update(kw)
        return NotifyEvent.model_validate(doc)

    async def test_remote_failure_does_not_block_local(self) -> None:
        from awayrelay.kernel.presence import PresenceMonitor
        from awayrelay.kernel.router import NotificationRouter, RoutingPolicy

        local_calls = []

        async def local(event, sound):
            local_calls.append((event.category, sound))

        async def remote(event):
            raise RuntimeError("telegram down")

        presence = PresenceMonitor()
        presence.set_manual("manual", manual_away=True)
        router = NotificationRouter(
            presence=presence,
            policy=lambda: RoutingPolicy(remote_configured=True),
            local=local,
            remote=remote,
        )
        with self.assertLogs("awayrelay.router", level="ERROR"):
            plan = await router.route(self._event())
        self.assertEqual(plan.channels(), ("remote", "local"))
        self.assertEqual(local_calls, [("permission", False)])

    async def test_lost_notification_is_recorded(self) -> None:
        from awayrelay.kernel.presence import PresenceMonitor
        from awayrelay.kernel.router import NotificationRouter, RoutingPolicy

        presence = PresenceMonitor()
        presence.on_lock()
        router = NotificationRouter(
            presence=presence,
            policy=lambda: RoutingPolicy(notify_local_when_away=False, remote_configured=False),
        )
        with self.assertLogs("awayrelay.router", level="WARNING") as cm:
            plan = await router.route(self._event())
        self.assertEqual(plan.diagnostic, "lost")
        self.assertEqual(len(router.diagnostics), 1)
        self.assertEqual(router.diagnostics[0]["diagnostic"], "lost")
        self.assertEqual(router.diagnostics[0]["target_id"], "%1")
        self.assertTrue(any("lost" in line for line in cm.output))

    async def test_refresh_runs_before_verdict(self) -> None:
        from awayrelay.kernel.presence import PresenceMonitor
        from awayrelay.kernel.router import NotificationRouter, RoutingPolicy

        presence = PresenceMonitor()
        remote_calls = []

        async def refresh():
            presence.set_manual("manual", manual_away=True)

        async def remote(event):
            remote_calls.append(event.category)

        router = NotificationRouter(
            presence=presence,
            policy=lambda: RoutingPolicy(notify_local_when_away=False, remote_configured=True),
            remote=remote,
            refresh=refresh,
        )
        plan = await router.route(self._event())
        self.assertEqual(plan.channels(), ("remote",))
        self.assertEqual(remote_calls, ["permission"])

    async def test_verdict_read_at_route_time(self) -> None:
        from awayrelay.kernel.presence import PresenceMonitor
        from awayrelay.kernel.router import NotificationRouter, RoutingPolicy

        remote_calls = []

        async def remote(event):
            remote_calls.append(event.category)

        presence = PresenceMonitor()
        router = NotificationRouter(presence=presence, policy=lambda: RoutingPolicy(remote_configured=True), remote=remote)
        await router.route(self._event(hook_event_name="Stop"))
        self.assertEqual(remote_calls, [])
        presence.on_sleep()
        await router.route(self._event(hook_event_name="Stop"))
        self.assertEqual(remote_calls, ["stop"])


if __name__ == "__main__":
    unittest.main()
