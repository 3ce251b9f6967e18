import argparse
import asyncio
import logging
import signal
import sys

from rbmini.channel import NotificationChannel
from rbmini.constants import CHANNEL_CAPACITY, LOCAL_NAME_PREFIX, SCAN_DWELL
from rbmini.errors import ConnectError, DiscoveryError
from rbmini.exporter import RecordExporter
from rbmini.monitor import TelemetryMonitor, run_pipeline
from rbmini.session import SessionManager

logger = logging.getLogger("rbmini")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="RaceBox Mini telemetry client")
    parser.add_argument("--console", action="store_true",
                        help="print decoded records to the terminal instead of opening the dashboard")
    parser.add_argument("--prefix", default=LOCAL_NAME_PREFIX,
                        help="advertised name prefix (default: %(default)r)")
    parser.add_argument("--scan-time", type=float, default=SCAN_DWELL,
                        help="scan dwell per adapter in seconds (default: %(default)s)")
    parser.add_argument("--capacity", type=int, default=CHANNEL_CAPACITY,
                        help="notification channel capacity (default: %(default)s)")
    parser.add_argument("--export", metavar="CSV",
                        help="console mode: write decoded records to this CSV file on exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def run_console(args) -> int:
    try:
        session = await SessionManager.discover(dwell=args.scan_time, name_prefix=args.prefix)
        connection = await session.connect()
    except (DiscoveryError, ConnectError) as e:
        logger.error("%s", e)
        return 1
    logger.info("Connected to RaceBox Mini %s", connection.serial)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, connection.shutdown)
    except NotImplementedError:
        # Windows event loops have no signal handlers
        pass

    monitor = TelemetryMonitor()
    exporter = RecordExporter()

    def show(record):
        exporter.add_record(record)
        print("\x1b[2J\x1b[H", end="")
        print(record)
        print(f"Checksum failures {monitor.checksum_failures}")

    channel = NotificationChannel(args.capacity)
    try:
        err = await run_pipeline(connection, channel, monitor, show)
    finally:
        await connection.close()
    if args.export and len(exporter):
        exporter.export_csv(args.export, serial=connection.serial)
    return 1 if err is not None else 0


def run_gui(args) -> int:
    from qasync import QEventLoop
    from PyQt6.QtWidgets import QApplication
    from dashboard.main_window import TelemetryDashboard

    app = QApplication([])
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)

    window = TelemetryDashboard(loop, name_prefix=args.prefix,
                                scan_time=args.scan_time, capacity=args.capacity)
    window.show()

    with loop:
        loop.run_forever()
    return 0


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if args.console:
        return asyncio.run(run_console(args))
    return run_gui(args)


if __name__ == "__main__":
    sys.exit(main())
