import asyncio

import pytest

from rbmini.channel import NotificationChannel
from rbmini.errors import NotificationSourceClosed
from rbmini.monitor import TelemetryMonitor, consume, run_pipeline
from rbmini.session import Connection

from conftest import REFERENCE_FRAME, FakePeripheral, numbered_frame, with_checksum


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_process_valid_frame():
    monitor = TelemetryMonitor()
    record = monitor.process(REFERENCE_FRAME)
    assert record.itow == 118286240
    assert monitor.last_record is record
    assert monitor.get_stats() == {"frame_count": 1, "checksum_failures": 0, "malformed_count": 0}


def test_checksum_failures_are_counted():
    monitor = TelemetryMonitor()
    assert monitor.process(REFERENCE_FRAME[:-2] + b"\xff\xff") is None
    assert monitor.process(b"\xb5") is None
    assert monitor.process(REFERENCE_FRAME) is not None
    assert monitor.checksum_failures == 2
    assert monitor.frame_count == 1


def test_malformed_frame_with_good_checksum_is_skipped():
    monitor = TelemetryMonitor()
    short = with_checksum(b"\xb5\x62\xff\x01\x02\x00\x11\x22\x00\x00")
    assert monitor.process(short) is None
    assert monitor.malformed_count == 1
    assert monitor.checksum_failures == 0


def test_reset_stats():
    monitor = TelemetryMonitor()
    monitor.process(REFERENCE_FRAME)
    monitor.process(b"")
    monitor.reset_stats()
    assert monitor.get_stats() == {"frame_count": 0, "checksum_failures": 0, "malformed_count": 0}
    assert monitor.last_record is None


def test_consume_decodes_each_frame_independently():
    payloads = [numbered_frame(1), REFERENCE_FRAME[:-1] + b"\x00", numbered_frame(2)]

    async def main():
        channel = NotificationChannel()
        for p in payloads:
            await channel.send(p)
        channel.finish()
        records = []
        monitor = TelemetryMonitor()
        await consume(channel, monitor, records.append)
        return monitor, records

    monitor, records = asyncio.run(main())
    assert [r.itow for r in records] == [1, 2]
    assert monitor.checksum_failures == 1


def test_run_pipeline_reports_disconnect_without_raising():
    frames = [numbered_frame(i) for i in range(50)]
    peripheral = FakePeripheral("RaceBox Mini 1", connected=True, frames=frames)
    connection = Connection(peripheral, "1")
    records = []

    async def main():
        pipeline = asyncio.ensure_future(
            run_pipeline(connection, NotificationChannel(8), TelemetryMonitor(), records.append))
        await settle()
        await peripheral.disconnect()
        return await pipeline

    err = asyncio.run(main())
    assert isinstance(err, NotificationSourceClosed)
    assert [r.itow for r in records] == list(range(50))


def test_run_pipeline_clean_shutdown():
    peripheral = FakePeripheral("RaceBox Mini 1", connected=True, frames=[REFERENCE_FRAME])
    connection = Connection(peripheral, "1")
    records = []

    async def main():
        pipeline = asyncio.ensure_future(
            run_pipeline(connection, NotificationChannel(), TelemetryMonitor(), records.append))
        await settle()
        connection.shutdown()
        return await pipeline

    assert asyncio.run(main()) is None
    assert len(records) == 1


def test_run_pipeline_callback_error_stops_producer():
    frames = [numbered_frame(i) for i in range(5)]
    peripheral = FakePeripheral("RaceBox Mini 1", connected=True, frames=frames)
    connection = Connection(peripheral, "1")
    channel = NotificationChannel(2)

    def on_record(record):
        raise ValueError(f"bad record {record.itow}")

    async def main():
        with pytest.raises(ValueError):
            await run_pipeline(connection, channel, TelemetryMonitor(), on_record)
        # producer has already unwound when the error surfaces
        return asyncio.all_tasks() - {asyncio.current_task()}

    assert asyncio.run(main()) == set()
    assert peripheral.unsubscribed
    assert channel.finished
