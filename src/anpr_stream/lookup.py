# lookup.py
# Vehicle lookup collaborator: plate -> owner / model / registration date
#
# lookup(plate) returns VehicleDetails or None (not found). Transport errors
# are logged and reported as None, never raised.

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

from . import config as config_mod
from .errors import ConfigError

NOT_FOUND = "Not Found"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class VehicleDetails:
    owner_name: str
    vehicle_model: str
    registration_date: str

    @classmethod
    def from_response(cls, data: dict) -> Optional["VehicleDetails"]:
        """Lookup JSON -> VehicleDetails. Accepts camelCase and snake_case keys."""
        if not isinstance(data, dict) or not data:
            return None

        def pick(*keys):
            for key in keys:
                value = data.get(key)
                if value not in (None, ""):
                    return str(value)
            return "N/A"

        details = cls(
            owner_name=pick("ownerName", "owner_name", "owner"),
            vehicle_model=pick("vehicleModel", "vehicle_model", "model"),
            registration_date=pick("registrationDate", "registration_date", "reg_date"),
        )
        if details.owner_name == details.vehicle_model == details.registration_date == "N/A":
            return None
        return details


@dataclass(frozen=True)
class VehicleRecord:
    """One persisted row of the enriched log."""
    plate_text: str
    owner_name: str
    vehicle_model: str
    registration_date: str
    timestamp: str

    @property
    def found(self) -> bool:
        return self.owner_name != NOT_FOUND

    @classmethod
    def build(cls, plate: str, details: Optional[VehicleDetails],
              timestamp: Optional[str] = None) -> "VehicleRecord":
        ts = timestamp or datetime.now().strftime(TIMESTAMP_FORMAT)
        if details is None:
            return cls(plate, NOT_FOUND, NOT_FOUND, NOT_FOUND, ts)
        return cls(plate, details.owner_name, details.vehicle_model,
                   details.registration_date, ts)

    def to_dict(self) -> dict:
        return {
            "plate_text": self.plate_text,
            "owner_name": self.owner_name,
            "vehicle_model": self.vehicle_model,
            "registration_date": self.registration_date,
            "timestamp": self.timestamp,
        }


class HttpVehicleLookup:
    """GET <url>?plate=<plate>. Stateless, safe to call from several workers."""

    def __init__(self, url: str, api_key: str = "", timeout: float = 5.0, event_log=None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.event_log = event_log

    def lookup(self, plate: str) -> Optional[VehicleDetails]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        try:
            response = requests.get(self.url, params={"plate": plate},
                                    headers=headers, timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            if self.event_log:
                self.event_log.log_error("Lookup", f"Lookup failed for {plate}", e)
            return None
        return VehicleDetails.from_response(data)

    __call__ = lookup


class MockVehicleLookup:
    """Fixed demo record after a simulated network delay."""

    DEMO = VehicleDetails(
        owner_name="Manav Vashistha",
        vehicle_model="Maruti Swift",
        registration_date="2023-04-15",
    )

    def __init__(self, delay: float = 0.5, details: Optional[VehicleDetails] = None):
        self.delay = delay
        self.details = details or self.DEMO

    def lookup(self, plate: str) -> Optional[VehicleDetails]:
        if self.delay > 0:
            time.sleep(self.delay)
        return self.details

    __call__ = lookup


def create_lookup(cfg: dict, event_log=None):
    mode = config_mod.get(cfg, "lookup.mode", "mock")
    if mode == "http":
        url = config_mod.require(cfg, "lookup.url")
        return HttpVehicleLookup(
            url,
            api_key=config_mod.get(cfg, "lookup.api_key", ""),
            timeout=float(config_mod.get(cfg, "lookup.timeout", 5.0)),
            event_log=event_log,
        )
    if mode == "mock":
        return MockVehicleLookup(delay=float(config_mod.get(cfg, "lookup.mock_delay", 0.5)))
    raise ConfigError(f"Unknown lookup.mode: {mode}")
