import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from bleak import BleakClient, BleakScanner, BleakError
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice

from .constants import CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER = "default"
SYSFS_BLUETOOTH = "/sys/class/bluetooth"

# sentinels pushed into the notification queue
_CLOSED = object()
_STOPPED = object()


@dataclass(frozen=True)
class Adapter:
    name: str


@dataclass
class CharInfo:
    service_uuid: str
    char_uuid: str
    props: List[str]


class Notifications:
    """
    Single-pass async iterator over the notification values of one
    characteristic. Ends when the peripheral disconnects (closed=True)
    or when interrupt() is called (closed=False).
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._done = False

    # radio side
    def push(self, data: bytes):
        if not self._done:
            self._queue.put_nowait(bytes(data))

    def source_closed(self):
        self._queue.put_nowait(_CLOSED)

    # consumer side
    def interrupt(self):
        self._queue.put_nowait(_STOPPED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self._done:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self.closed = True
        if item is _CLOSED or item is _STOPPED:
            self._done = True
            raise StopAsyncIteration
        return item


class PeripheralHandle:
    """A discovered RaceBox candidate. Connecting happens in place."""

    def __init__(self, device: BLEDevice, name: Optional[str], rssi: int = 0):
        self.device = device
        self.name = name or "unknown name"
        self.address = device.address
        self.rssi = rssi
        self.client: Optional[BleakClient] = None
        self.notify_char: Optional[BleakGATTCharacteristic] = None
        self._notifications: Optional[Notifications] = None

    def __repr__(self):
        return f"PeripheralHandle({self.name!r}, {self.address})"

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected

    async def connect(self, timeout: float = CONNECT_TIMEOUT):
        self.client = BleakClient(self.device, disconnected_callback=self._on_disconnect)
        await self.client.connect(timeout=timeout)
        logger.info("Connected: %s [%s]", self.name, self.address)

    async def disconnect(self):
        try:
            if self.client and self.client.is_connected:
                if self.notify_char:
                    try:
                        await self.client.stop_notify(self.notify_char)
                    except BleakError as e:
                        logger.debug("Stop notify failed: %s", e)
                await self.client.disconnect()
        finally:
            if self._notifications is not None:
                self._notifications.source_closed()
            self.client = None
            self.notify_char = None
            self._notifications = None
        logger.info("Disconnected: %s", self.name)

    async def characteristics(self) -> List[CharInfo]:
        if not self.is_connected:
            raise BleakError("Not connected to any device.")
        chars = []
        for svc in self.client.services:
            for ch in svc.characteristics:
                chars.append(CharInfo(svc.uuid, ch.uuid, list(ch.properties)))
        return chars

    async def subscribe(self, uuid: str) -> Notifications:
        if not self.is_connected:
            raise BleakError("Not connected.")
        ch = next(
            (c for svc in self.client.services for c in svc.characteristics if c.uuid.lower() == uuid.lower()),
            None
        )
        if not ch:
            raise BleakError(f"Characteristic {uuid} not found.")
        notifications = Notifications()

        def callback(_: BleakGATTCharacteristic, data: bytearray):
            notifications.push(data)

        # a disconnect during start_notify must already see this iterator
        self._notifications = notifications
        try:
            await self.client.start_notify(ch, callback)
        except BaseException:
            self._notifications = None
            raise
        self.notify_char = ch
        logger.info("Start notify %s", uuid)
        return notifications

    async def unsubscribe(self):
        if self.client and self.client.is_connected and self.notify_char:
            await self.client.stop_notify(self.notify_char)
            logger.info("Stop notify")
        self.notify_char = None
        self._notifications = None

    def _on_disconnect(self, _: BleakClient):
        logger.warning("Peripheral %s disconnected", self.name)
        if self._notifications is not None:
            self._notifications.source_closed()


class BleakRadio:
    """Adapter enumeration and scanning on top of bleak."""

    def adapters(self) -> List[Adapter]:
        if sys.platform.startswith("linux"):
            # BlueZ exposes hci0, hci1, ... here
            try:
                names = sorted(n for n in os.listdir(SYSFS_BLUETOOTH) if n.startswith("hci"))
            except FileNotFoundError:
                return []
            return [Adapter(n) for n in names]
        # CoreBluetooth / WinRT only ever use the system adapter
        return [Adapter(DEFAULT_ADAPTER)]

    async def scan(self, adapter: Adapter, dwell: float) -> List[PeripheralHandle]:
        kwargs = {}
        if adapter.name != DEFAULT_ADAPTER:
            kwargs["adapter"] = adapter.name
        scanner = BleakScanner(**kwargs)
        await scanner.start()
        try:
            await asyncio.sleep(dwell)
        finally:
            await scanner.stop()

        result = []
        for device, adv_data in scanner.discovered_devices_and_advertisement_data.values():
            name = adv_data.local_name or device.name
            result.append(PeripheralHandle(device, name, adv_data.rssi))
        return result
