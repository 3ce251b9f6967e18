"""
Consumer side of the pipeline: validate, decode and tally frames drained
from a NotificationChannel.
"""
import asyncio
import logging
from typing import Callable, Dict, Optional

from . import checksum
from .channel import NotificationChannel
from .errors import MalformedFrame, StreamError
from .message import TelemetryRecord, decode

logger = logging.getLogger(__name__)


class TelemetryMonitor:
    """Turns raw payloads into TelemetryRecords and keeps running counters."""

    def __init__(self):
        self.frame_count = 0
        self.checksum_failures = 0
        self.malformed_count = 0
        self.last_record: Optional[TelemetryRecord] = None

    def process(self, payload: bytes) -> Optional[TelemetryRecord]:
        """Decoded record, or None if the frame fails its checksum or layout."""
        if not checksum.validate(payload):
            self.checksum_failures += 1
            logger.debug("Checksum failed on %d byte frame", len(payload))
            return None
        try:
            record = decode(payload)
        except MalformedFrame as e:
            self.malformed_count += 1
            logger.warning("Skipping frame: %s", e)
            return None
        self.frame_count += 1
        self.last_record = record
        return record

    def get_stats(self) -> Dict[str, int]:
        return {
            "frame_count": self.frame_count,
            "checksum_failures": self.checksum_failures,
            "malformed_count": self.malformed_count,
        }

    def reset_stats(self):
        self.frame_count = 0
        self.checksum_failures = 0
        self.malformed_count = 0
        self.last_record = None


async def consume(channel: NotificationChannel, monitor: TelemetryMonitor,
                  on_record: Callable[[TelemetryRecord], None]):
    """Drain `channel` until the producer finishes it."""
    async for payload in channel:
        record = monitor.process(payload)
        if record is not None:
            on_record(record)


async def run_pipeline(connection, channel: NotificationChannel, monitor: TelemetryMonitor,
                       on_record: Callable[[TelemetryRecord], None]) -> Optional[StreamError]:
    """
    Run connection.stream() and consume() side by side until the stream ends.

    A StreamError ends only this pipeline: it is logged and returned,
    never raised. Returns None on a clean shutdown.
    """
    producer = asyncio.ensure_future(connection.stream(channel))
    try:
        await consume(channel, monitor, on_record)
    except BaseException:
        channel.close()
        producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)
        raise
    channel.close()
    try:
        await producer
    except StreamError as e:
        logger.error("Stream from %s terminated: %s", connection.serial, e)
        return e
    return None
