import logging
from datetime import datetime

import pandas as pd

from .message import TelemetryRecord

logger = logging.getLogger(__name__)


class RecordExporter:
    """Collect decoded records and export them to CSV."""

    def __init__(self):
        self.rows = []

    def add_record(self, record: TelemetryRecord):
        self.rows.append(record.to_row())

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows)

    def export_csv(self, filename: str = None, serial: str = None):
        """Export collected records to a CSV file and return its name."""
        if not filename:
            stem = f"racebox_{serial}" if serial else "racebox"
            filename = f"{stem}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"

        df = self.to_dataframe()
        df.to_csv(filename, index=False)
        logger.info("Saved %d records to %s", len(self.rows), filename)
        return filename

    def clear(self):
        self.rows.clear()

    def __len__(self):
        return len(self.rows)
