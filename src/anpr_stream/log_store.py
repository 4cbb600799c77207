# log_store.py
# Append-only CSV logs, column-addressed by header name
#
#   basic log:    Timestamp, Plate Number                 (awaiting enrichment)
#   enriched log: + Owner Name, Vehicle Model, Registration Date

import csv
import os
from datetime import datetime
from threading import Lock
from typing import Dict, List, Optional, Sequence

from .errors import LogStoreError
from .lookup import TIMESTAMP_FORMAT, VehicleRecord

COL_TIMESTAMP = "Timestamp"
COL_PLATE = "Plate Number"
COL_OWNER = "Owner Name"
COL_MODEL = "Vehicle Model"
COL_REG_DATE = "Registration Date"

BASIC_HEADERS = (COL_TIMESTAMP, COL_PLATE)
FULL_HEADERS = (COL_TIMESTAMP, COL_PLATE, COL_OWNER, COL_MODEL, COL_REG_DATE)


class CsvLogStore:
    """Thread-safe append-only CSV table. OS errors surface as LogStoreError."""

    def __init__(self, path: str, headers: Sequence[str]):
        self.path = path
        self.headers = tuple(headers)
        self.lock = Lock()

    def exists(self) -> bool:
        return os.path.isfile(self.path) and os.path.getsize(self.path) > 0

    def append_row(self, row: Dict[str, str]):
        missing = [h for h in self.headers if h not in row]
        if missing:
            raise ValueError(f"Row is missing columns: {missing}")
        with self.lock:
            try:
                folder = os.path.dirname(self.path)
                if folder:
                    os.makedirs(folder, exist_ok=True)
                write_header = not self.exists()
                with open(self.path, "a", newline="", encoding="utf-8") as f:
                    writer = csv.DictWriter(f, fieldnames=self.headers, extrasaction="ignore")
                    if write_header:
                        writer.writeheader()
                    writer.writerow(row)
            except OSError as e:
                raise LogStoreError(self.path, f"could not append ({e.strerror or e}); file may be open in another program") from e

    def read_rows(self) -> List[Dict[str, str]]:
        """All data rows (header skipped). Missing file -> []."""
        with self.lock:
            if not os.path.isfile(self.path):
                return []
            try:
                with open(self.path, "r", newline="", encoding="utf-8") as f:
                    return list(csv.DictReader(f))
            except OSError as e:
                raise LogStoreError(self.path, f"could not read ({e.strerror or e})") from e

    def delete(self):
        with self.lock:
            if not os.path.exists(self.path):
                return
            try:
                os.remove(self.path)
            except OSError as e:
                raise LogStoreError(self.path, f"could not delete ({e.strerror or e}); file may be locked") from e

    def __len__(self) -> int:
        return len(self.read_rows())


class BasicLogStore(CsvLogStore):
    def __init__(self, path: str):
        super().__init__(path, BASIC_HEADERS)

    def append(self, plate: str, timestamp: Optional[str] = None):
        self.append_row({
            COL_TIMESTAMP: timestamp or datetime.now().strftime(TIMESTAMP_FORMAT),
            COL_PLATE: plate,
        })

    def read_plates(self) -> List[str]:
        plates = []
        for row in self.read_rows():
            plate = (row.get(COL_PLATE) or "").strip()
            if plate:
                plates.append(plate)
        return plates


class EnrichedLogStore(CsvLogStore):
    def __init__(self, path: str):
        super().__init__(path, FULL_HEADERS)

    def append(self, record: VehicleRecord):
        self.append_row({
            COL_TIMESTAMP: record.timestamp,
            COL_PLATE: record.plate_text,
            COL_OWNER: record.owner_name,
            COL_MODEL: record.vehicle_model,
            COL_REG_DATE: record.registration_date,
        })

    def read_records(self) -> List[VehicleRecord]:
        return [
            VehicleRecord(
                plate_text=row.get(COL_PLATE, ""),
                owner_name=row.get(COL_OWNER, ""),
                vehicle_model=row.get(COL_MODEL, ""),
                registration_date=row.get(COL_REG_DATE, ""),
                timestamp=row.get(COL_TIMESTAMP, ""),
            )
            for row in self.read_rows()
        ]
