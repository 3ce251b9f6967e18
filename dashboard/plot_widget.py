import pyqtgraph as pg
from PyQt6.QtWidgets import QWidget, QVBoxLayout
from time import perf_counter

from rbmini.data_buffer import DataBuffer


class PlotWidget(QWidget):
    """Realtime plot widget for one telemetry channel."""
    def __init__(self, title="Telemetry", color='y', maxlen=500):
        super().__init__()
        layout = QVBoxLayout(self)
        self.plot = pg.PlotWidget(title=title)
        layout.addWidget(self.plot)
        self.curve = self.plot.plot(pen=color)
        self.buffer = DataBuffer(maxlen=maxlen)
        self.t0 = perf_counter()

    def append(self, value: float):
        self.buffer.append(perf_counter() - self.t0, value)

    def refresh(self):
        if not len(self.buffer):
            return
        self.curve.setData(*self.buffer.to_numpy())

    def reset(self):
        """Reset plot data and timer"""
        self.buffer.clear()
        self.t0 = perf_counter()
        self.curve.clear()
