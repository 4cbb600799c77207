# schemas.py
# Pydantic schemas for the control surface

from typing import List, Optional

from pydantic import BaseModel


# ============================================================
# Pipeline state
# ============================================================

class PlateReadingModel(BaseModel):
    box: List[int]
    confidence: float
    text: str
    stable_text: str
    valid: bool
    new: bool = False


class StatusMessageModel(BaseModel):
    source: str
    message: str
    level: str = "info"
    timestamp: float


class PipelineStatus(BaseModel):
    source_state: str
    live: bool
    capture_busy: bool
    batch_busy: bool
    session_plates: List[str]
    pending_rows: int = 0
    readings: List[PlateReadingModel] = []
    messages: List[StatusMessageModel] = []


class ActionResponse(BaseModel):
    status: str
    detail: Optional[str] = None


# ============================================================
# Plates
# ============================================================

class VehicleRecordModel(BaseModel):
    plate_text: str
    timestamp: str
    owner_name: Optional[str] = None
    vehicle_model: Optional[str] = None
    registration_date: Optional[str] = None


class PlateList(BaseModel):
    total: int
    plates: List[str]
    recent: List[VehicleRecordModel]


# ============================================================
# System
# ============================================================

class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    source_state: str
    ws_connections: int
