"""
Device discovery and connection lifecycle for the RaceBox Mini.

SessionManager owns the discovered-but-unconnected peripherals and is used
once: discover() -> connect() -> Connection. The Connection owns the live
link and forwards notification payloads into a NotificationChannel.
"""
import asyncio
import logging
from typing import List, Optional

from bleak import BleakError

from .ble_client import BleakRadio, PeripheralHandle
from .channel import NotificationChannel
from .constants import CONNECT_TIMEOUT, LOCAL_NAME_PREFIX, NOTIFY_CHAR, SCAN_DWELL
from .errors import (
    ChannelClosed, ConsumerGone, DeviceNotFound, NoAdaptersFound, NoDevicesFound,
    NotificationSourceClosed, NotifyCharacteristicNotFound, ScanFailed,
    ServiceDiscoveryFailed, SubscriptionFailed,
)

logger = logging.getLogger(__name__)

RADIO_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


def match_serial(name: Optional[str], prefix: str = LOCAL_NAME_PREFIX) -> Optional[str]:
    """Serial suffix of an advertised name like "RaceBox Mini 1234567890", else None."""
    if not name or not name.startswith(prefix):
        return None
    serial = name[len(prefix):]
    return serial or None


class SessionManager:
    def __init__(self, adapters: list, peripherals: List[PeripheralHandle],
                 name_prefix: str = LOCAL_NAME_PREFIX, connect_timeout: float = CONNECT_TIMEOUT):
        self.adapters = adapters
        self.peripherals = peripherals
        self.name_prefix = name_prefix
        self.connect_timeout = connect_timeout

    @classmethod
    async def discover(cls, radio=None, dwell: float = SCAN_DWELL,
                       name_prefix: str = LOCAL_NAME_PREFIX,
                       connect_timeout: float = CONNECT_TIMEOUT) -> "SessionManager":
        """
        Scan every adapter for `dwell` seconds and collect what was seen.

        Raises NoAdaptersFound, ScanFailed or NoDevicesFound.
        """
        radio = radio or BleakRadio()
        adapters = radio.adapters()
        if not adapters:
            raise NoAdaptersFound()

        peripherals: List[PeripheralHandle] = []
        seen = set()
        for adapter in adapters:
            logger.info("Scanning on %s for %.1fs", adapter.name, dwell)
            try:
                found = await radio.scan(adapter, dwell)
            except RADIO_ERRORS as e:
                raise ScanFailed(f"Failed to scan on adapter {adapter.name}: {e}") from e
            for p in found:
                if p.address in seen:
                    continue
                seen.add(p.address)
                peripherals.append(p)

        if not peripherals:
            raise NoDevicesFound()
        logger.info("Found %d device(s)", len(peripherals))
        return cls(adapters, peripherals, name_prefix, connect_timeout)

    async def connect(self) -> "Connection":
        """Connect to the first peripheral advertising as "<prefix><serial>"."""
        for peripheral in self.peripherals:
            serial = match_serial(peripheral.name, self.name_prefix)
            if serial is None:
                continue

            if peripheral.is_connected:
                # already linked (e.g. by an earlier session): adopt it as is
                logger.info("%s already connected, reusing link", peripheral.name)
            else:
                try:
                    await peripheral.connect(timeout=self.connect_timeout)
                except RADIO_ERRORS as e:
                    logger.warning("Connect to %s failed: %s", peripheral.name, e)
                    continue

            return Connection(peripheral, serial)
        raise DeviceNotFound(self.name_prefix)


class Connection:
    """One live link to a RaceBox Mini."""

    def __init__(self, peripheral: PeripheralHandle, serial: str):
        self.peripheral = peripheral
        self.serial = serial
        self._stop = asyncio.Event()
        self._notifications = None

    def __repr__(self):
        return f"Connection(serial={self.serial!r}, address={self.peripheral.address})"

    async def stream(self, sink: NotificationChannel, notify_uuid: str = NOTIFY_CHAR):
        """
        Forward every notification payload into `sink`, in order.

        Returns after shutdown(). Raises NotificationSourceClosed when the
        device disconnects and ConsumerGone when `sink` was closed by the
        consumer. `sink` is always finished on exit.
        """
        try:
            try:
                chars = await self.peripheral.characteristics()
            except RADIO_ERRORS as e:
                raise ServiceDiscoveryFailed(f"Couldn't discover services: {e}") from e

            target = next(
                (c for c in chars
                 if c.char_uuid.lower() == notify_uuid.lower() and "notify" in c.props),
                None
            )
            if target is None:
                raise NotifyCharacteristicNotFound(notify_uuid)

            try:
                notifications = await self.peripheral.subscribe(target.char_uuid)
            except RADIO_ERRORS as e:
                raise SubscriptionFailed(f"Subscribe to {target.char_uuid} failed: {e}") from e

            self._notifications = notifications
            if self._stop.is_set():
                notifications.interrupt()
            try:
                await self._forward(notifications, sink)
            finally:
                self._notifications = None
                await self._unsubscribe()
        finally:
            sink.finish()

    async def _forward(self, notifications, sink: NotificationChannel):
        count = 0
        async for payload in notifications:
            if self._stop.is_set():
                break
            try:
                sent = await sink.send(payload, stop=self._stop)
            except ChannelClosed:
                raise ConsumerGone() from None
            if not sent:
                break
            count += 1
        logger.info("Stream from %s ended after %d notifications", self.serial, count)
        if notifications.closed and not self._stop.is_set():
            raise NotificationSourceClosed()

    async def _unsubscribe(self):
        try:
            await self.peripheral.unsubscribe()
        except RADIO_ERRORS as e:
            logger.debug("Unsubscribe failed: %s", e)

    def shutdown(self):
        """
        Ask a running stream() to return, even while it waits on a full
        channel. Safe to call before stream() starts.
        """
        self._stop.set()
        if self._notifications is not None:
            self._notifications.interrupt()

    def resume(self):
        """Clear an earlier shutdown() so stream() can run again."""
        self._stop.clear()

    async def close(self):
        self.shutdown()
        try:
            await self.peripheral.disconnect()
        except RADIO_ERRORS as e:
            logger.warning("Disconnect from %s failed: %s", self.serial, e)
