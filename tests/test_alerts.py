"""
Alert Tests
===========

State machine cooldown/clear behaviour, fanout isolation and local
feedback sequencing.
"""

import asyncio

import pytest

from specbridge.alerts import state_machine
from specbridge.alerts.fanout import AlertFanout, NetworkAlertChannel
from specbridge.alerts.feedback import (
    CommandFeedbackDevice,
    FeedbackError,
    LocalFeedback,
    LoggingFeedbackDevice,
    create_feedback_device,
)
from specbridge.alerts.state_machine import (
    AlertCategory,
    AlertEvent,
    AlertEventKind,
    AlertStateMachine,
)
from specbridge.detection.classification import (
    Observation,
    ViolationCategory,
    classify,
    indeterminate,
)


FOOTWEAR = classify(Observation(True, False, False, False))
HANDWEAR = classify(Observation(False, False, True, False))
BOTH = classify(Observation(True, False, True, False))
COMPLIANT = classify(Observation(True, True, True, True))
NOTHING_VISIBLE = classify(Observation(False, False, False, False))


class FailingDevice:
    async def play(self, category):
        raise FeedbackError("speaker unplugged")


class RecordingChannel:
    def __init__(self):
        self.events = []

    async def deliver(self, event):
        self.events.append(event)


class BrokenChannel:
    async def deliver(self, event):
        raise RuntimeError("channel exploded")


class TestAlertStateMachine:
    """Tests for raise / suppress / clear transitions."""

    def test_first_violation_raises(self, monkeypatch):
        monkeypatch.setattr(state_machine.time, "time", lambda: 1_700_000_000.0)
        machine = AlertStateMachine(cooldown=10.0)
        (event,) = machine.process(FOOTWEAR, now=100.0)

        assert event.kind is AlertEventKind.RAISE
        assert event.categories == (AlertCategory.FOOTWEAR,)
        assert event.wire_category == "shoes"
        assert event.message == "Shoes required!"
        assert event.timestamp == 1_700_000_000_000

    def test_repeat_within_cooldown_suppressed(self):
        machine = AlertStateMachine(cooldown=10.0)
        machine.process(FOOTWEAR, now=100.0)

        assert machine.process(FOOTWEAR, now=105.0) == []
        assert machine.suppressed_count == 1

    def test_repeat_after_cooldown_raises_again(self):
        machine = AlertStateMachine(cooldown=10.0)
        machine.process(FOOTWEAR, now=100.0)

        events = machine.process(FOOTWEAR, now=110.0)
        assert [e.kind for e in events] == [AlertEventKind.RAISE]

    def test_categories_debounced_independently(self):
        machine = AlertStateMachine(cooldown=10.0)
        machine.process(FOOTWEAR, now=100.0)

        (event,) = machine.process(BOTH, now=102.0)

        assert event.categories == (AlertCategory.HANDWEAR,)
        assert event.wire_category == "both"
        assert set(machine.active_categories()) == {
            AlertCategory.FOOTWEAR,
            AlertCategory.HANDWEAR,
        }

    def test_single_clear_on_transition(self):
        """Repeated compliant results clear exactly once."""
        machine = AlertStateMachine(cooldown=10.0)
        machine.process(BOTH, now=100.0)

        first = machine.process(COMPLIANT, now=101.0)
        second = machine.process(COMPLIANT, now=102.0)
        third = machine.process(COMPLIANT, now=103.0)

        assert [e.kind for e in first] == [AlertEventKind.CLEAR]
        assert second == [] and third == []
        assert not machine.any_active

    def test_compliant_while_inactive_is_silent(self):
        machine = AlertStateMachine()
        assert machine.process(COMPLIANT) == []
        assert machine.cleared_count == 0

    @pytest.mark.parametrize("result", [NOTHING_VISIBLE, indeterminate("timeout")])
    def test_nothing_visible_and_errors_clear(self, result):
        machine = AlertStateMachine()
        machine.process(HANDWEAR, now=1.0)

        (event,) = machine.process(result, now=2.0)
        assert event.kind is AlertEventKind.CLEAR

    def test_raise_after_clear_ignores_cooldown(self):
        machine = AlertStateMachine(cooldown=10.0)
        machine.process(FOOTWEAR, now=100.0)
        machine.process(COMPLIANT, now=101.0)

        events = machine.process(FOOTWEAR, now=102.0)
        assert [e.kind for e in events] == [AlertEventKind.RAISE]

    def test_reset_emits_nothing(self):
        machine = AlertStateMachine()
        machine.process(BOTH, now=1.0)
        machine.reset()

        assert not machine.any_active
        assert machine.process(COMPLIANT, now=2.0) == []
        assert machine.cleared_count == 0

    def test_wall_clock_jump_does_not_end_cooldown(self, monkeypatch):
        """A wall-clock step forward inside the cooldown still suppresses."""
        readings = iter([500.0, 502.0, 503.0])
        wall = {"now": 1_700_000_000.0}
        monkeypatch.setattr(state_machine.time, "time", lambda: wall["now"])
        machine = AlertStateMachine(cooldown=10.0, clock=lambda: next(readings))

        (first,) = machine.process(FOOTWEAR)
        wall["now"] += 3600.0
        second = machine.process(FOOTWEAR)
        wall["now"] -= 7200.0
        third = machine.process(FOOTWEAR)

        assert first.kind is AlertEventKind.RAISE
        assert second == [] and third == []
        assert machine.suppressed_count == 2
        assert machine.snapshot()["shoes"]["last_raised_at"] == 500.0

    def test_snapshot(self):
        machine = AlertStateMachine()
        machine.process(FOOTWEAR, now=5.0)
        assert machine.snapshot()["shoes"] == {"active": True, "last_raised_at": 5.0}


class TestAlertFanout:
    """Tests for independent channel delivery."""

    def test_failing_channel_does_not_block_others(self):
        recorder = RecordingChannel()
        fanout = AlertFanout([BrokenChannel(), recorder])
        event = AlertEvent(kind=AlertEventKind.CLEAR)

        async def run():
            fanout.dispatch(event)
            await fanout.drain()

        asyncio.run(run())
        assert recorder.events == [event]
        assert fanout.failed_count == 1
        assert fanout.delivered_count == 1

    def test_dispatch_after_close_is_noop(self):
        recorder = RecordingChannel()
        fanout = AlertFanout([recorder])

        async def run():
            await fanout.close()
            fanout.dispatch(AlertEvent(kind=AlertEventKind.CLEAR))
            await fanout.drain()

        asyncio.run(run())
        assert recorder.events == []
        assert fanout.closed

    def test_close_cancels_pending_deliveries(self):
        class SlowChannel:
            delivered = False

            async def deliver(self, event):
                await asyncio.sleep(10)
                self.delivered = True

        channel = SlowChannel()
        fanout = AlertFanout([channel])

        async def run():
            fanout.dispatch(AlertEvent(kind=AlertEventKind.CLEAR))
            await asyncio.sleep(0)
            await fanout.close()
            return fanout.pending

        assert asyncio.run(run()) == 0
        assert not channel.delivered

    def test_network_channel_maps_events(self, fake_relay, monkeypatch):
        monkeypatch.setattr(state_machine.time, "time", lambda: 1.0)
        relay = fake_relay()
        channel = NetworkAlertChannel(relay)
        machine = AlertStateMachine()

        async def run():
            for event in machine.process(BOTH, now=1.0):
                await channel.deliver(event)
            for event in machine.process(COMPLIANT, now=2.0):
                await channel.deliver(event)

        asyncio.run(run())
        assert relay.violations == [
            {"category": "both", "message": "Shoes and gloves required!", "timestamp": 1000}
        ]
        assert relay.clears == 1

    def test_slow_raise_not_overtaken_by_clear(self, fake_relay):
        """The relay sees the raise before the clear even when the raise is slow."""
        relay = fake_relay(violation_delay=0.05)
        fanout = AlertFanout([NetworkAlertChannel(relay)])
        machine = AlertStateMachine()

        async def run():
            for event in machine.process(FOOTWEAR, now=1.0):
                fanout.dispatch(event)
            for event in machine.process(COMPLIANT, now=2.0):
                fanout.dispatch(event)
            queued = fanout.pending
            await fanout.drain()
            return queued

        assert asyncio.run(run()) == 2
        assert relay.log == ["violation", "clear"]
        assert fanout.delivered_count == 2
        assert fanout.pending == 0

    def test_slow_channel_does_not_delay_others(self):
        recorder = RecordingChannel()
        gate_holder = {}

        class StuckChannel:
            async def deliver(self, event):
                await gate_holder["gate"].wait()

        fanout = AlertFanout([StuckChannel(), recorder])
        events = [AlertEvent(kind=AlertEventKind.RAISE), AlertEvent(kind=AlertEventKind.CLEAR)]

        async def run():
            gate_holder["gate"] = asyncio.Event()
            for event in events:
                fanout.dispatch(event)
            await asyncio.sleep(0.01)
            seen = list(recorder.events)
            await fanout.close()
            return seen

        assert asyncio.run(run()) == events

    def test_relay_failure_is_counted(self, fake_relay):
        fanout = AlertFanout([NetworkAlertChannel(fake_relay(fail=True))])

        async def run():
            fanout.dispatch(AlertEvent(kind=AlertEventKind.CLEAR))
            await fanout.drain()

        asyncio.run(run())
        assert fanout.failed_count == 1


class TestLocalFeedback:
    """Tests for the wearer-side channel."""

    def test_plays_raised_categories_in_sequence(self):
        device = LoggingFeedbackDevice()
        feedback = LocalFeedback(device, cooldown=10.0, sequence_delay=0.0)
        event = AlertEvent(
            kind=AlertEventKind.RAISE,
            categories=(AlertCategory.FOOTWEAR, AlertCategory.HANDWEAR),
        )

        asyncio.run(feedback.deliver(event))
        assert device.played == [AlertCategory.FOOTWEAR, AlertCategory.HANDWEAR]

    def test_per_category_cooldown(self):
        device = LoggingFeedbackDevice()
        feedback = LocalFeedback(device, cooldown=60.0, sequence_delay=0.0)
        event = AlertEvent(kind=AlertEventKind.RAISE, categories=(AlertCategory.HANDWEAR,))

        async def run():
            await feedback.deliver(event)
            await feedback.deliver(event)

        asyncio.run(run())
        assert device.played == [AlertCategory.HANDWEAR]

    def test_clear_plays_nothing(self):
        device = LoggingFeedbackDevice()
        asyncio.run(LocalFeedback(device).deliver(AlertEvent(kind=AlertEventKind.CLEAR)))
        assert device.played == []

    def test_device_failure_is_logged_not_raised(self):
        feedback = LocalFeedback(FailingDevice(), sequence_delay=0.0)
        event = AlertEvent(kind=AlertEventKind.RAISE, categories=(AlertCategory.FOOTWEAR,))

        asyncio.run(feedback.deliver(event))
        assert feedback.failures == 1


class TestFeedbackDevices:
    """Tests for the device backends."""

    def test_factory(self):
        assert isinstance(create_feedback_device("log"), LoggingFeedbackDevice)
        assert isinstance(
            create_feedback_device("command", {"shoes": ["true"]}),
            CommandFeedbackDevice,
        )
        with pytest.raises(ValueError):
            create_feedback_device("buzzer")

    def test_command_without_mapping_fails(self):
        device = CommandFeedbackDevice({})
        with pytest.raises(FeedbackError):
            asyncio.run(device.play(AlertCategory.FOOTWEAR))

    def test_missing_executable_fails(self):
        device = CommandFeedbackDevice({"shoes": ["/nonexistent/specbridge-player"]})
        with pytest.raises(FeedbackError, match="Cannot start"):
            asyncio.run(device.play(AlertCategory.FOOTWEAR))
