# batch.py
# Offline enrichment: basic log -> lookups -> enriched log, then clear the basic log

import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import LogStoreError
from .log_store import BasicLogStore, EnrichedLogStore
from .lookup import VehicleDetails, VehicleRecord


@dataclass
class BatchResult:
    total: int = 0
    enriched: int = 0
    not_found: int = 0
    basic_cleared: bool = False
    aborted: bool = False


class BatchEnricher:
    """
    Run on demand, not per frame.

    Not transactional: a crash mid-batch leaves the basic log intact, so a
    rerun redoes the whole list and may repeat rows in the enriched log
    (append-only history).
    """

    def __init__(
        self,
        basic_store: BasicLogStore,
        enriched_store: EnrichedLogStore,
        lookup: Callable[[str], Optional[VehicleDetails]],
        status=None,
        event_log=None,
        request_delay: float = 0.5,
    ):
        self.basic_store = basic_store
        self.enriched_store = enriched_store
        self.lookup = lookup
        self.status = status
        self.event_log = event_log
        self.request_delay = request_delay

    def _report(self, message: str, level: str = "info"):
        if self.status:
            self.status.publish("Batch", message, level)
        else:
            print(f"[Batch] {message}")

    def run(self) -> BatchResult:
        result = BatchResult()

        try:
            plates = self.basic_store.read_plates()
        except LogStoreError as e:
            self._report(f"Could not read {self.basic_store.path}: {e}", "warning")
            result.aborted = True
            return result

        result.total = len(plates)
        if not plates:
            self._report("Nothing to enrich: basic log is empty")
            return result

        self._report(f"Enriching {len(plates)} plate(s) from {self.basic_store.path}")

        for i, plate in enumerate(plates, start=1):
            self._report(f"[{i}/{len(plates)}] Fetching details for: {plate}")
            try:
                details = self.lookup(plate)
            except Exception as e:
                if self.event_log:
                    self.event_log.log_error("Batch", f"Lookup raised for {plate}", e)
                details = None

            record = VehicleRecord.build(plate, details)
            try:
                self.enriched_store.append(record)
            except LogStoreError as e:
                # Basic log stays as is, a rerun picks everything up again
                self._report(f"Stopped at {i}/{len(plates)}: {e}", "warning")
                result.aborted = True
                return result

            result.enriched += 1
            if not record.found:
                result.not_found += 1
            if self.event_log:
                self.event_log.log_plate(plate, "found" if record.found else "not_found", origin="batch")

            if self.request_delay > 0 and i < len(plates):
                time.sleep(self.request_delay)

        try:
            self.basic_store.delete()
            result.basic_cleared = True
        except LogStoreError as e:
            self._report(f"Enriched data saved, but the basic log was not cleared: {e}", "warning")

        self._report(f"Batch complete: {result.enriched} plate(s) saved to {self.enriched_store.path}")
        return result
