"""
Machine actuator drivers.

The claw machine's coin, grab and joystick inputs are wired to a relay
board that listens on a serial port for one ASCII command per line:

    PULSE <channel> <ms>
    PRESS <channel>
    RELEASE <channel>
    RELEASE_ALL
"""

import asyncio
import re
from typing import Final, Optional

import serial
import serial_asyncio

from claw_queue.configs import ActuatorSettings
from claw_queue.core.exceptions import ActuatorError
from claw_queue.core.interfaces import Actuator
from claw_queue.loggers import logger


CHANNEL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9_]+$")
LINE_ENDING: Final[bytes] = b"\n"


def _validate_channel(channel: str) -> str:
    if not CHANNEL_PATTERN.match(channel):
        raise ActuatorError(f"Invalid channel name: {channel!r}", channel=channel)
    return channel


class SerialRelayActuator:
    """
    Asynchronous driver for the serial relay board.

    Connects lazily on the first command and reconnects after a failed
    write.

    Attributes:
        port: Serial port path.
        baudrate: Serial baudrate.
    """

    def __init__(self, port: str, baudrate: int = 9600, write_timeout: float = 1.0) -> None:
        self.port = port
        self.baudrate = baudrate
        self._write_timeout = write_timeout
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    async def connect(self) -> None:
        """
        Open the serial port.

        Raises:
            ActuatorError: If the port cannot be opened.
        """
        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self.port,
                baudrate=self.baudrate,
            )
            logger.info(f"Relay board: port {self.port} opened")
        except (serial.SerialException, OSError, ValueError) as e:
            self._reader = self._writer = None
            raise ActuatorError(f"Cannot open relay board port {self.port}: {e}") from e

    async def disconnect(self) -> None:
        """Close the serial port."""
        writer = self._writer
        self._reader = self._writer = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.warning(f"Relay board: error while closing port: {e}")

    async def _send(self, command: str) -> None:
        async with self._lock:
            if self._writer is None:
                await self.connect()

            try:
                self._writer.write(command.encode("ascii") + LINE_ENDING)
                await asyncio.wait_for(self._writer.drain(), timeout=self._write_timeout)
                logger.debug(f"Relay board <- {command}")
            except (serial.SerialException, OSError, asyncio.TimeoutError) as e:
                await self.disconnect()
                raise ActuatorError(f"Relay board write failed ({command}): {e}") from e

    async def pulse(self, channel: str, duration_ms: int) -> None:
        await self._send(f"PULSE {_validate_channel(channel)} {int(duration_ms)}")

    async def press(self, channel: str) -> None:
        await self._send(f"PRESS {_validate_channel(channel)}")

    async def release(self, channel: str) -> None:
        await self._send(f"RELEASE {_validate_channel(channel)}")

    async def release_all(self) -> None:
        await self._send("RELEASE_ALL")


class DryRunActuator:
    """Actuator that only logs, for machines without a relay board attached."""

    async def pulse(self, channel: str, duration_ms: int) -> None:
        logger.info(f"[dry-run] pulse {channel} for {duration_ms} ms")

    async def press(self, channel: str) -> None:
        logger.info(f"[dry-run] press {channel}")

    async def release(self, channel: str) -> None:
        logger.info(f"[dry-run] release {channel}")

    async def release_all(self) -> None:
        logger.info("[dry-run] release all")


def create_actuator(settings: ActuatorSettings) -> Actuator:
    """
    Build the actuator for the configured port.

    Args:
        settings: Actuator settings; an empty port selects dry-run mode.

    Returns:
        Actuator instance.
    """
    if not settings.port:
        logger.warning("No relay board port configured, running actuator in dry-run mode")
        return DryRunActuator()
    return SerialRelayActuator(
        settings.port,
        baudrate=settings.baudrate,
        write_timeout=settings.write_timeout,
    )
