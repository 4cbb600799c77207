# enrichment.py
# Stable plate text -> at-most-once lookup + persistence per session

from collections import deque
from datetime import datetime
from threading import Lock
from typing import Callable, Deque, List, Optional, Set, Tuple

from .errors import LogStoreError
from .lookup import TIMESTAMP_FORMAT, VehicleDetails, VehicleRecord

MODE_LIVE = "live"          # lookup now, append to enriched log
MODE_DEFERRED = "deferred"  # append to basic log, BatchEnricher looks up later


class SessionDedupSet:
    """Plates already handled this session. add_if_absent() is the commit point."""

    def __init__(self):
        self._plates: Set[str] = set()
        self._order: List[str] = []
        self._lock = Lock()

    def add_if_absent(self, plate: str) -> bool:
        """True if the plate was new (and is now marked)."""
        with self._lock:
            if plate in self._plates:
                return False
            self._plates.add(plate)
            self._order.append(plate)
            return True

    def __contains__(self, plate: str) -> bool:
        with self._lock:
            return plate in self._plates

    def __len__(self) -> int:
        with self._lock:
            return len(self._plates)

    def snapshot(self) -> List[str]:
        """Plates in the order they were first seen."""
        with self._lock:
            return list(self._order)

    def clear(self):
        with self._lock:
            self._plates.clear()
            self._order.clear()


class EnrichmentOrchestrator:
    """
    submit(text) -> True only the first time a valid plate is seen this session.

    1. invalid        -> False, no side effect
    2. already in set -> False, no side effect
    3. insert into set (before the lookup, so two workers seeing the same
       plate cannot both pass)
    4. live: lookup + enriched row ("Not Found" row on miss)
       deferred: basic row only

    A log append that fails (file locked) is kept in memory and retried on
    the next submit or flush_pending().
    """

    def __init__(
        self,
        validator: Callable[[str], bool],
        lookup: Optional[Callable[[str], Optional[VehicleDetails]]] = None,
        enriched_store=None,
        basic_store=None,
        mode: str = MODE_LIVE,
        status=None,
        event_log=None,
        recent_size: int = 50,
    ):
        if mode not in (MODE_LIVE, MODE_DEFERRED):
            raise ValueError(f"Unknown enrichment mode: {mode}")
        if mode == MODE_LIVE and lookup is None:
            raise ValueError("live mode needs a lookup collaborator")
        self.validator = validator
        self.lookup = lookup
        self.enriched_store = enriched_store
        self.basic_store = basic_store
        self.mode = mode
        self.status = status
        self.event_log = event_log

        self.session = SessionDedupSet()

        self._recent: Deque[dict] = deque(maxlen=recent_size)
        self._recent_lock = Lock()

        # (store, payload) appends that failed
        self._pending: List[Tuple[object, object]] = []
        self._pending_lock = Lock()

        self._listeners: List[Callable[[dict], None]] = []

        self.stats = {
            "submitted": 0,
            "invalid": 0,
            "duplicates": 0,
            "new": 0,
            "found": 0,
            "not_found": 0,
        }
        self._stats_lock = Lock()

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    # =========================================================
    # Public API
    # =========================================================

    def add_listener(self, callback: Callable[[dict], None]):
        """callback(event_dict) after each new plate is handled."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[dict], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def submit(self, text: str) -> bool:
        self._count("submitted")

        if not self.validator(text):
            self._count("invalid")
            return False

        if not self.session.add_if_absent(text):
            self._count("duplicates")
            return False

        self._count("new")
        self._report("info", f"New valid plate detected: {text}")
        if self.event_log:
            self.event_log.log_plate(text, "new", mode=self.mode)

        if self._pending:
            self.flush_pending()

        if self.mode == MODE_DEFERRED:
            event = {"plate_text": text, "timestamp": datetime.now().strftime(TIMESTAMP_FORMAT)}
            self._persist(self.basic_store, text)
        else:
            record = VehicleRecord.build(text, self._lookup(text))
            if record.found:
                self._count("found")
                self._report("info", f"{text}: {record.owner_name}, {record.vehicle_model}")
            else:
                self._count("not_found")
                self._report("warning", f"{text}: no vehicle data found")
            if self.event_log:
                self.event_log.log_plate(text, "found" if record.found else "not_found")
            event = record.to_dict()
            self._persist(self.enriched_store, record)

        with self._recent_lock:
            self._recent.append(event)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                if self.event_log:
                    self.event_log.log_error("Enrichment", "Listener failed", e)
        return True

    def reset(self):
        """New session: forget handled plates and recent results. Durable logs untouched."""
        self.session.clear()
        with self._recent_lock:
            self._recent.clear()
        self._report("info", "Session reset")

    def recent(self) -> List[dict]:
        with self._recent_lock:
            return list(self._recent)

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush_pending(self) -> int:
        """Retry failed appends in order. Returns how many were written."""
        written = 0
        with self._pending_lock:
            while self._pending:
                store, payload = self._pending[0]
                try:
                    store.append(payload)
                except LogStoreError as e:
                    self._report("warning", f"Log still unavailable: {e}")
                    break
                self._pending.pop(0)
                written += 1
        if written:
            self._report("info", f"Wrote {written} pending log row(s)")
        return written

    # =========================================================
    # Internals
    # =========================================================

    def _lookup(self, plate: str) -> Optional[VehicleDetails]:
        try:
            return self.lookup(plate)
        except Exception as e:
            if self.event_log:
                self.event_log.log_error("Enrichment", f"Lookup raised for {plate}", e)
            return None

    def _persist(self, store, payload):
        if store is None:
            return
        try:
            store.append(payload)
        except LogStoreError as e:
            with self._pending_lock:
                self._pending.append((store, payload))
            self._report("warning", f"Could not write log, will retry: {e}")
            if self.event_log:
                self.event_log.log_error("Enrichment", "Log append failed", e)

    def _report(self, level: str, message: str):
        if self.status:
            self.status.publish("Enrichment", message, level)
