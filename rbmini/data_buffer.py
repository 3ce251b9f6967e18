import numpy as np
from collections import deque


class DataBuffer:
    """Ring buffer of (time, value) samples for realtime plotting."""
    def __init__(self, maxlen=2000):
        self.time = deque(maxlen=maxlen)
        self.values = deque(maxlen=maxlen)

    def append(self, t, v):
        self.time.append(t)
        self.values.append(v)

    def clear(self):
        self.time.clear()
        self.values.clear()

    def __len__(self):
        return len(self.values)

    def to_numpy(self):
        return np.fromiter(self.time, float), np.fromiter(self.values, float)
