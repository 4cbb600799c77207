# pipeline_builder.py
# Shared pipeline assembly: detector, OCR, stages, lookup, log stores, runner
# Used by the CLI (watch / enrich / lookup) and the API server

import os

from . import config as config_mod
from .annotate import CaptureArchive
from .batch import BatchEnricher
from .detection import DetectionStage
from .detector import PlateDetector
from .enrichment import EnrichmentOrchestrator
from .file_logger import EventLog
from .log_store import BasicLogStore, EnrichedLogStore
from .lookup import create_lookup
from .ocr import TesseractOCR
from .plate_format import PlateTextNormalizer, PlateValidator, REGION_CODES
from .runner import PipelineRunner
from .stabilization import StabilizationEngine
from .status import ConsoleSink, QueueSink, StatusChannel
from .video import FrameSource, open_capture


def create_status(console: bool = True):
    """Returns (status_channel, history). history keeps recent messages for the API."""
    status = StatusChannel()
    history = status.subscribe(QueueSink(maxlen=50))
    if console:
        status.subscribe(ConsoleSink())
    return status, history


def create_event_log(cfg: dict) -> EventLog:
    return EventLog(config_mod.resolve_path(cfg, config_mod.get(cfg, "output.dir", "outputs")))


def create_detector(cfg: dict) -> PlateDetector:
    model_path = config_mod.resolve_path(cfg, config_mod.require(cfg, "models.plate_detector"))
    return PlateDetector(
        model_path,
        input_size=int(config_mod.get(cfg, "models.input_size", 640)),
        device=config_mod.get(cfg, "device", "cpu"),
        # Stage applies the real threshold; the model only pre-filters
        min_conf=min(0.25, float(config_mod.get(cfg, "detection.confidence_threshold", 0.5))),
    )


def create_ocr(cfg: dict) -> TesseractOCR:
    return TesseractOCR(
        tesseract_cmd=config_mod.get(cfg, "ocr.tesseract_cmd", "") or "",
        psm=int(config_mod.get(cfg, "ocr.psm", 7)),
        upscale=float(config_mod.get(cfg, "ocr.upscale", 2.0)),
    )


def create_normalizer(cfg: dict) -> PlateTextNormalizer:
    return PlateTextNormalizer(
        substitutions=config_mod.get(cfg, "plate.substitutions"),
        max_length=int(config_mod.get(cfg, "plate.max_length", 10)),
    )


def create_validator(cfg: dict) -> PlateValidator:
    return PlateValidator(
        grammar=config_mod.get(cfg, "plate.grammar", "standard"),
        region_codes=config_mod.get(cfg, "plate.region_codes") or REGION_CODES,
    )


def create_stage(cfg: dict, ocr, event_log=None) -> DetectionStage:
    return DetectionStage(
        ocr,
        normalizer=create_normalizer(cfg),
        confidence_threshold=float(config_mod.get(cfg, "detection.confidence_threshold", 0.5)),
        min_aspect_ratio=float(config_mod.get(cfg, "detection.min_aspect_ratio", 1.5)),
        max_aspect_ratio=float(config_mod.get(cfg, "detection.max_aspect_ratio", 5.5)),
        input_size=int(config_mod.get(cfg, "models.input_size", 640)),
        event_log=event_log,
    )


def create_stores(cfg: dict):
    """Returns (basic_store, enriched_store)."""
    basic_path = config_mod.resolve_path(cfg, config_mod.require(cfg, "log.basic_file"))
    return BasicLogStore(basic_path), EnrichedLogStore(config_mod.enriched_log_path(cfg))


def create_batch_enricher(cfg: dict, lookup=None, stores=None, status=None, event_log=None) -> BatchEnricher:
    basic_store, enriched_store = stores or create_stores(cfg)
    return BatchEnricher(
        basic_store,
        enriched_store,
        lookup or create_lookup(cfg, event_log),
        status=status,
        event_log=event_log,
        request_delay=float(config_mod.get(cfg, "batch.request_delay", 0.5)),
    )


def create_archive(cfg: dict):
    if not config_mod.get(cfg, "output.save_images", True):
        return None
    return CaptureArchive(
        config_mod.resolve_path(cfg, config_mod.get(cfg, "output.input_folder", "outputs/input")),
        config_mod.resolve_path(cfg, config_mod.get(cfg, "output.output_folder", "outputs/output")),
    )


def create_source(cfg: dict, status=None, event_log=None, opener=open_capture) -> FrameSource:
    return FrameSource(
        str(config_mod.require(cfg, "camera.url")),
        opener=opener,
        reconnect_delay=float(config_mod.get(cfg, "camera.reconnect_delay", 3.0)),
        stop_timeout=float(config_mod.get(cfg, "camera.stop_timeout", 1.0)),
        status=status,
        event_log=event_log,
    )


def build_runner(cfg: dict, status=None, history=None, event_log=None, detector=None,
                 ocr=None, lookup=None, opener=open_capture) -> PipelineRunner:
    """Create every collaborator, nothing is started.

    Any failure (missing model, no Tesseract, bad config) raises here, before
    a thread exists. Collaborators can be injected (tests, shared models).
    """
    if status is None:
        status, history = create_status()
    event_log = event_log or create_event_log(cfg)

    detector = detector or create_detector(cfg)
    ocr = ocr or create_ocr(cfg)
    lookup = lookup or create_lookup(cfg, event_log)

    validator = create_validator(cfg)
    stage = create_stage(cfg, ocr, event_log)
    stabilizer = StabilizationEngine(int(config_mod.get(cfg, "stabilization.history_size", 10)))
    basic_store, enriched_store = create_stores(cfg)

    orchestrator = EnrichmentOrchestrator(
        validator,
        lookup=lookup,
        enriched_store=enriched_store,
        basic_store=basic_store,
        mode=config_mod.get(cfg, "enrichment.mode", "live"),
        status=status,
        event_log=event_log,
    )
    batch_enricher = create_batch_enricher(
        cfg, lookup=lookup, stores=(basic_store, enriched_store),
        status=status, event_log=event_log,
    )
    source = create_source(cfg, status=status, event_log=event_log, opener=opener)

    runner = PipelineRunner(
        source,
        detector,
        stage,
        stabilizer,
        validator,
        orchestrator,
        batch_enricher=batch_enricher,
        archive=create_archive(cfg),
        status=status,
        history=history,
        event_log=event_log,
        bucket_factor=int(config_mod.get(cfg, "stabilization.bucket_factor", 20)),
        live_interval=float(config_mod.get(cfg, "live.interval", 0.2)),
        stop_timeout=float(config_mod.get(cfg, "camera.stop_timeout", 1.0)),
    )
    event_log.log_event("Builder", "runner_built",
                        camera=os.path.basename(str(config_mod.get(cfg, "camera.url"))),
                        grammar=validator.grammar, mode=orchestrator.mode)
    return runner
