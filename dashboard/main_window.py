from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout,
    QPushButton, QLabel, QListWidget, QListWidgetItem,
    QMessageBox, QGroupBox, QFileDialog
)
from PyQt6.QtCore import QTimer
from PyQt6.QtGui import QFont
from rbmini.channel import NotificationChannel
from rbmini.constants import CHANNEL_CAPACITY, LOCAL_NAME_PREFIX, SCAN_DWELL
from rbmini.errors import RbMiniError
from rbmini.exporter import RecordExporter
from rbmini.message import TelemetryRecord
from rbmini.monitor import TelemetryMonitor, run_pipeline
from rbmini.session import Connection, SessionManager, match_serial
from .plot_widget import PlotWidget
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class TelemetryDashboard(QMainWindow):
    def __init__(self, loop: asyncio.AbstractEventLoop, name_prefix: str = LOCAL_NAME_PREFIX,
                 scan_time: float = SCAN_DWELL, capacity: int = CHANNEL_CAPACITY):
        super().__init__()
        self.loop = loop
        self.name_prefix = name_prefix
        self.scan_time = scan_time
        self.capacity = capacity
        self.setWindowTitle("RaceBox Mini Telemetry Dashboard")
        self.resize(1400, 900)

        self.session: Optional[SessionManager] = None
        self.connection: Optional[Connection] = None
        self.stream_task: Optional[asyncio.Future] = None
        self.monitor = TelemetryMonitor()
        self.exporter = RecordExporter()

        # --- UI layout
        # Top bar - All controls horizontal
        top_bar = QWidget()
        top_layout = QHBoxLayout(top_bar)

        # BLE Control buttons
        self.btn_scan = QPushButton("🔍 Scan")
        self.btn_connect = QPushButton("🔗 Connect")
        self.btn_disconnect = QPushButton("❌ Disconnect")

        # Device list (compact)
        device_label = QLabel("📱 Devices:")
        self.list_devices = QListWidget()
        self.list_devices.setMaximumHeight(80)
        self.list_devices.setMaximumWidth(300)

        # Data Stream buttons
        stream_label = QLabel("📡 Stream:")
        self.btn_start = QPushButton("▶ Start")
        self.btn_stop = QPushButton("⏹ Stop")
        self.btn_ClearPlot = QPushButton("Clear Plot")
        self.btn_export = QPushButton("💾 Export CSV")

        # Status & Stats
        self.lbl_status = QLabel("Status: Idle")
        self.lbl_status.setFont(QFont("Segoe UI", 9, QFont.Weight.Bold))
        self.lbl_stats = QLabel("📈 0 frames")
        self.lbl_stats.setFont(QFont("Segoe UI", 9))

        top_layout.addWidget(self.btn_scan)
        top_layout.addWidget(self.btn_connect)
        top_layout.addWidget(self.btn_disconnect)
        top_layout.addWidget(device_label)
        top_layout.addWidget(self.list_devices)
        top_layout.addWidget(stream_label)
        top_layout.addWidget(self.btn_start)
        top_layout.addWidget(self.btn_stop)
        top_layout.addWidget(self.btn_ClearPlot)
        top_layout.addWidget(self.btn_export)
        top_layout.addStretch(1)
        top_layout.addWidget(self.lbl_status)
        top_layout.addWidget(self.lbl_stats)

        # GPS readout
        info_group = QGroupBox("GPS")
        info_layout = QGridLayout(info_group)
        self.info_labels = {}
        for i, key in enumerate(["Serial", "UTC", "Fix", "Satellites", "Position",
                                 "Altitude", "Speed", "Heading", "Battery"]):
            value = QLabel("-")
            value.setFont(QFont("Consolas", 10))
            info_layout.addWidget(QLabel(f"{key}:"), i // 3, (i % 3) * 2)
            info_layout.addWidget(value, i // 3, (i % 3) * 2 + 1)
            self.info_labels[key] = value

        # Plot grid: row 0 g-force, row 1 rotation rate, row 2 speed
        plot_panel = QWidget()
        plot_layout = QGridLayout(plot_panel)
        plot_layout.setSpacing(3)

        self.plot_g_x = PlotWidget("G-Force X front/back (g)", 'r', maxlen=1000)
        self.plot_g_y = PlotWidget("G-Force Y right/left (g)", 'g', maxlen=1000)
        self.plot_g_z = PlotWidget("G-Force Z up/down (g)", 'b', maxlen=1000)

        self.plot_rot_x = PlotWidget("Roll rate (deg/s)", 'r', maxlen=1000)
        self.plot_rot_y = PlotWidget("Pitch rate (deg/s)", 'g', maxlen=1000)
        self.plot_rot_z = PlotWidget("Yaw rate (deg/s)", 'b', maxlen=1000)

        self.plot_speed = PlotWidget("Speed (km/h)", 'y', maxlen=1000)

        plot_layout.addWidget(self.plot_g_x, 0, 0)
        plot_layout.addWidget(self.plot_g_y, 0, 1)
        plot_layout.addWidget(self.plot_g_z, 0, 2)
        plot_layout.addWidget(self.plot_rot_x, 1, 0)
        plot_layout.addWidget(self.plot_rot_y, 1, 1)
        plot_layout.addWidget(self.plot_rot_z, 1, 2)
        plot_layout.addWidget(self.plot_speed, 2, 0, 1, 3)

        self.plots = [self.plot_g_x, self.plot_g_y, self.plot_g_z,
                      self.plot_rot_x, self.plot_rot_y, self.plot_rot_z,
                      self.plot_speed]

        # Main layout
        root = QWidget()
        root_layout = QVBoxLayout(root)
        root_layout.addWidget(top_bar)
        root_layout.addWidget(info_group)
        root_layout.addWidget(plot_panel)
        self.setCentralWidget(root)

        # --- signals
        self.btn_scan.clicked.connect(lambda: asyncio.ensure_future(self.do_scan()))
        self.btn_connect.clicked.connect(lambda: asyncio.ensure_future(self.do_connect()))
        self.btn_disconnect.clicked.connect(lambda: asyncio.ensure_future(self.do_disconnect()))
        self.btn_start.clicked.connect(self.do_start)
        self.btn_stop.clicked.connect(self.do_stop)
        self.btn_ClearPlot.clicked.connect(self.clear_all_plots)
        self.btn_export.clicked.connect(self.do_export)

        # Refresh timer for plots
        self.timer = QTimer(self)
        self.timer.timeout.connect(self.refresh_plots)
        self.timer.start(40)

        # Stats timer
        self.stats_timer = QTimer(self)
        self.stats_timer.timeout.connect(self.update_stats)
        self.stats_timer.start(1000)

    # ========== BLE Actions ==========
    async def do_scan(self):
        self.set_status(f"🔍 Scanning for {self.scan_time:.0f}s...", "scanning")
        try:
            self.session = await SessionManager.discover(dwell=self.scan_time,
                                                         name_prefix=self.name_prefix)
        except RbMiniError as e:
            self.session = None
            self.error(f"Scan failed: {e}")
            return
        self.list_devices.clear()
        matches = 0
        for p in self.session.peripherals:
            mark = ""
            if match_serial(p.name, self.name_prefix):
                mark = "★ "
                matches += 1
            self.list_devices.addItem(QListWidgetItem(f"{mark}{p.name} [{p.address}] RSSI:{p.rssi}"))
        self.set_status(f"Found {len(self.session.peripherals)} devices, {matches} RaceBox", "normal")

    async def do_connect(self):
        if self.session is None:
            self.error("Scan first.")
            return
        if self.connection is not None:
            self.error("Already connected.")
            return
        try:
            self.connection = await self.session.connect()
        except RbMiniError as e:
            self.error(f"Connect failed: {e}")
            return
        # a SessionManager is good for one connect()
        self.session = None
        self.info_labels["Serial"].setText(self.connection.serial)
        self.set_status(f"✅ Connected: {self.connection.serial}", "success")

    async def do_disconnect(self):
        if self.connection is None:
            return
        await self.connection.close()
        if self.stream_task is not None:
            await asyncio.wait({self.stream_task})
        self.connection = None
        self.info_labels["Serial"].setText("-")
        self.set_status("⚪ Disconnected", "normal")

    def do_start(self):
        if self.connection is None:
            self.error("Not connected to device.")
            return
        if self.stream_task is not None and not self.stream_task.done():
            return
        self.connection.resume()
        channel = NotificationChannel(self.capacity)
        self.stream_task = asyncio.ensure_future(
            run_pipeline(self.connection, channel, self.monitor, self.on_record))
        self.stream_task.add_done_callback(self.on_stream_done)
        self.set_status("📡 Streaming...", "streaming")

    def do_stop(self):
        if self.connection is not None:
            self.connection.shutdown()

    def on_stream_done(self, task: asyncio.Future):
        if task.cancelled():
            return
        err = task.exception()
        if err is None:
            err = task.result()
        if err is not None:
            self.error(f"Stream ended: {err}")
            if self.connection is not None and not self.connection.peripheral.is_connected:
                self.connection = None
                self.info_labels["Serial"].setText("-")
        else:
            self.set_status("⏹ Stopped", "normal")

    def do_export(self):
        if not len(self.exporter):
            self.error("Nothing to export yet.")
            return
        filename, _ = QFileDialog.getSaveFileName(self, "Export CSV", "", "CSV files (*.csv)")
        if not filename:
            return
        serial = self.connection.serial if self.connection else None
        saved = self.exporter.export_csv(filename, serial=serial)
        self.set_status(f"💾 Saved {len(self.exporter)} records to {saved}", "success")

    # ========== UI Management ==========
    def set_status(self, msg: str, status_type: str = "normal"):
        """Set status message with color coding

        Args:
            msg: Status message to display
            status_type: Type of status - "normal", "success", "streaming", "scanning", "error"
        """
        self.lbl_status.setText(f"Status: {msg}")

        if status_type == "success":
            self.lbl_status.setStyleSheet("color: #00ff00; font-weight: bold;")
        elif status_type == "streaming":
            self.lbl_status.setStyleSheet("color: #00bfff; font-weight: bold;")
        elif status_type == "scanning":
            self.lbl_status.setStyleSheet("color: #ffaa00; font-weight: bold;")
        elif status_type == "error":
            self.lbl_status.setStyleSheet("color: #ff0000; font-weight: bold;")
        else:
            self.lbl_status.setStyleSheet("")

    def error(self, msg: str):
        logger.error(msg)
        self.set_status(f"❌ {msg}", "error")
        QMessageBox.critical(self, "Error", msg)

    def refresh_plots(self):
        for plot in self.plots:
            plot.refresh()
        record = self.monitor.last_record
        if record is not None:
            self.update_info(record)

    def update_info(self, record: TelemetryRecord):
        fix = record.fix
        fix_text = fix.name if fix is not None else f"unknown ({record.fix_status})"
        if not record.is_valid_fix():
            fix_text += " (invalid)"
        charging = " ⚡" if record.is_charging() else ""
        self.info_labels["UTC"].setText(str(record.datetime))
        self.info_labels["Fix"].setText(fix_text)
        self.info_labels["Satellites"].setText(str(record.number_of_svs))
        if record.is_valid_position():
            self.info_labels["Position"].setText(
                f"{record.coordinates.latitude_deg:.7f}, {record.coordinates.longitude_deg:.7f}")
            self.info_labels["Altitude"].setText(f"{record.msl_altitude / 1000.0:.1f} m MSL")
        else:
            self.info_labels["Position"].setText("invalid")
            self.info_labels["Altitude"].setText("invalid")
        self.info_labels["Speed"].setText(f"{record.speed_kph:.1f} km/h")
        self.info_labels["Heading"].setText(f"{record.heading_deg:.1f}°")
        self.info_labels["Battery"].setText(f"{record.battery_level}%{charging}")

    def clear_all_plots(self):
        for plot in self.plots:
            plot.reset()
        self.exporter.clear()
        self.monitor.reset_stats()
        self.set_status("🧹 Plots cleared", "normal")

    def update_stats(self):
        stats = self.monitor.get_stats()
        self.lbl_stats.setText(
            f"📈 {stats['frame_count']} frames, {stats['checksum_failures']} checksum errors")

    # ========== Data path ==========
    def on_record(self, record: TelemetryRecord):
        gx, gy, gz = record.g_forces
        rx, ry, rz = record.rot_rates
        self.plot_g_x.append(gx)
        self.plot_g_y.append(gy)
        self.plot_g_z.append(gz)
        self.plot_rot_x.append(rx)
        self.plot_rot_y.append(ry)
        self.plot_rot_z.append(rz)
        self.plot_speed.append(record.speed_kph)
        self.exporter.add_record(record)
