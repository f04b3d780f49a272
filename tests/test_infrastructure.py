"""
Unit tests for the event system, loop timers, broadcaster and actuator.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from claw_queue.configs import ActuatorSettings
from claw_queue.core.exceptions import ActuatorError
from claw_queue.domain.timers import LoopTimers
from claw_queue.event_system import EventConsumer, EventPublisher, EventType
from claw_queue.infrastructure.actuator import DryRunActuator, SerialRelayActuator, create_actuator
from claw_queue.infrastructure.broadcaster import RealtimeBroadcaster


# =============================================================================
# Event System
# =============================================================================


class TestEventSystem:
    """Tests for EventPublisher and EventConsumer."""

    @pytest.mark.asyncio
    async def test_publish_nowait_drops_when_full(self):
        publisher = EventPublisher(asyncio.Queue(maxsize=1))

        assert publisher.publish_nowait(EventType.QUEUE_UPDATE.value, payload={}) is True
        assert publisher.publish_nowait(EventType.QUEUE_UPDATE.value, payload={}) is False

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        queue = asyncio.Queue()
        consumer = EventConsumer(queue)
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        working = AsyncMock()
        consumer.register_handler("player-start", failing)
        consumer.register_handler("player-start", working)

        await consumer._process_event({"type": "player-start", "payload": {}})

        failing.assert_awaited_once()
        working.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_handler_called_for_its_event_only(self):
        consumer = EventConsumer(asyncio.Queue())
        handler = MagicMock()
        consumer.register_handler("player-end", handler)

        await consumer._process_event({"type": "player-end"})
        await consumer._process_event({"type": "player-start"})

        handler.assert_called_once()


# =============================================================================
# Loop Timers
# =============================================================================


class TestLoopTimers:
    """Tests for event-loop backed timers."""

    @pytest.mark.asyncio
    async def test_callback_runs_after_delay(self):
        timers = LoopTimers()
        fired = asyncio.Event()

        async def callback():
            fired.set()

        timers.call_later(0.01, callback, name="test")
        await asyncio.wait_for(fired.wait(), timeout=1)
        await timers.shutdown()

    @pytest.mark.asyncio
    async def test_cancelled_timer_does_not_fire(self):
        timers = LoopTimers()
        callback = AsyncMock()

        handle = timers.call_later(0.01, callback, name="test")
        handle.cancel()
        await asyncio.sleep(0.05)

        assert handle.cancelled is True
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self):
        timers = LoopTimers()
        done = asyncio.Event()

        async def callback():
            done.set()
            raise RuntimeError("boom")

        timers.call_later(0, callback, name="test")
        await asyncio.wait_for(done.wait(), timeout=1)
        await timers.shutdown()


# =============================================================================
# Broadcaster
# =============================================================================


class TestRealtimeBroadcaster:
    """Tests for the WebSocket relay broadcaster."""

    @pytest.mark.asyncio
    async def test_events_relayed_to_websocket(self):
        broadcaster = RealtimeBroadcaster(ws_url="ws://relay", channel="claw")
        sent = asyncio.Event()
        send = AsyncMock(side_effect=lambda *args, **kwargs: sent.set() or True)

        with patch("claw_queue.infrastructure.broadcaster.send_to_ws", send):
            await broadcaster.start()
            broadcaster.publish("player-start", {"participant_id": 1})
            await asyncio.wait_for(sent.wait(), timeout=2)
            await broadcaster.stop()

        send.assert_awaited_once_with(
            "player-start",
            {"participant_id": 1},
            ws_url="ws://relay",
            channel="claw",
        )

    def test_publish_never_raises_when_full(self):
        broadcaster = RealtimeBroadcaster(max_pending=1)

        broadcaster.publish("queue-update", {})
        broadcaster.publish("queue-update", {})

        assert broadcaster.pending == 1


# =============================================================================
# Actuator
# =============================================================================


class TestSerialRelayActuator:
    """Tests for the serial relay board driver."""

    @staticmethod
    def _writer():
        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.wait_closed = AsyncMock()
        return writer

    @pytest.mark.asyncio
    async def test_commands_written_as_lines(self):
        writer = self._writer()
        open_connection = AsyncMock(return_value=(MagicMock(), writer))

        with patch("claw_queue.infrastructure.actuator.serial_asyncio.open_serial_connection", open_connection):
            actuator = SerialRelayActuator("/dev/ttyUSB0")
            await actuator.pulse("credit", 200)
            await actuator.press("up")
            await actuator.release("up")
            await actuator.release_all()

        open_connection.assert_awaited_once_with(url="/dev/ttyUSB0", baudrate=9600)
        written = [call.args[0] for call in writer.write.call_args_list]
        assert written == [
            b"PULSE credit 200\n",
            b"PRESS up\n",
            b"RELEASE up\n",
            b"RELEASE_ALL\n",
        ]

    @pytest.mark.asyncio
    async def test_invalid_channel_rejected(self):
        actuator = SerialRelayActuator("/dev/ttyUSB0")

        with pytest.raises(ActuatorError):
            await actuator.press("up; RELEASE_ALL")

    @pytest.mark.asyncio
    async def test_open_failure_raises_actuator_error(self):
        open_connection = AsyncMock(side_effect=OSError("no such port"))

        with patch("claw_queue.infrastructure.actuator.serial_asyncio.open_serial_connection", open_connection):
            actuator = SerialRelayActuator("/dev/missing")
            with pytest.raises(ActuatorError):
                await actuator.release_all()

        assert actuator.is_connected is False

    @pytest.mark.asyncio
    async def test_write_failure_disconnects(self):
        writer = self._writer()
        writer.drain.side_effect = OSError("unplugged")
        open_connection = AsyncMock(return_value=(MagicMock(), writer))

        with patch("claw_queue.infrastructure.actuator.serial_asyncio.open_serial_connection", open_connection):
            actuator = SerialRelayActuator("/dev/ttyUSB0")
            with pytest.raises(ActuatorError):
                await actuator.pulse("grab", 300)

        assert actuator.is_connected is False
        writer.close.assert_called_once()

    def test_create_actuator_dry_run_without_port(self):
        assert isinstance(create_actuator(ActuatorSettings(port="")), DryRunActuator)
        assert isinstance(create_actuator(ActuatorSettings(port="/dev/ttyUSB0")), SerialRelayActuator)
