# cli.py
# CLI argument parsing + entry point: serve / watch / enrich / lookup

import sys
import time
import argparse

from . import config as config_mod
from .errors import AnprError, ConfigError
from .log_store import EnrichedLogStore
from .lookup import VehicleRecord, create_lookup

PREVIEW_WINDOW = "ANPR live"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="anpr-stream", description="Live number plate recognition")
    parser.add_argument("--config", type=str, default=None,
                        help=f"Config file (default: {config_mod.CONFIG_PATH}, or $ANPR_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Start the stream and serve the HTTP/WebSocket API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    watch = sub.add_parser("watch", help="Live scanning, status printed to console")
    watch.add_argument("--duration", type=float, default=0.0,
                       help="Stop after S seconds (0 = until Ctrl+C)")
    watch.add_argument("--show", action="store_true",
                       help="Preview window with plate boxes (q to quit, ignored when HEADLESS=1)")

    sub.add_parser("enrich", help="Look up every plate in the basic log once")

    lookup = sub.add_parser("lookup", help="Single lookup + enriched log append (API smoke test)")
    lookup.add_argument("plate", type=str)
    lookup.add_argument("--log", type=str, default=None,
                        help="Enriched log file (default: from config)")

    return parser.parse_args(argv)


# =========================================================
# Commands
# =========================================================

def cmd_serve(args, cfg) -> int:
    from .api import start_server
    from .pipeline_builder import build_runner

    config_mod.print_gpu_info()
    runner = build_runner(cfg)
    start_server(
        runner,
        host=args.host or config_mod.get(cfg, "api.host", "0.0.0.0"),
        port=args.port or int(config_mod.get(cfg, "api.port", 8000)),
        jpeg_quality=int(config_mod.get(cfg, "api.jpeg_quality", 75)),
    )
    return 0


def cmd_watch(args, cfg) -> int:
    from .pipeline_builder import build_runner

    config_mod.print_gpu_info()
    runner = build_runner(cfg)
    show = config_mod.show_window(cfg, args.show)
    if args.show and not show:
        print("[Watch] HEADLESS set, preview window disabled")

    runner.start()
    runner.start_live()

    t_start = time.time()
    try:
        while args.duration <= 0 or time.time() - t_start < args.duration:
            if not show:
                time.sleep(0.5)
                continue
            if not _show_preview(runner):
                break
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        runner.stop()
        if show:
            import cv2
            cv2.destroyAllWindows()

    plates = runner.orchestrator.session.snapshot()
    print(f"\n{'=' * 60}")
    print(f"Session: {len(plates)} plate(s) in {time.time() - t_start:.0f}s")
    for plate in plates:
        print(f"  {plate}")
    print(f"{'=' * 60}")
    return 0


def _show_preview(runner) -> bool:
    """One preview tick. False when 'q' was pressed."""
    import cv2
    from .annotate import draw_readings

    frame = runner.latest_frame()
    if frame is not None:
        draw_readings(frame, runner.latest_readings())
        cv2.imshow(PREVIEW_WINDOW, frame)
    return cv2.waitKey(30) & 0xFF != ord("q")


def cmd_enrich(args, cfg) -> int:
    from .pipeline_builder import create_batch_enricher, create_event_log, create_status

    status, _ = create_status()
    enricher = create_batch_enricher(cfg, status=status, event_log=create_event_log(cfg))
    result = enricher.run()
    return 1 if result.aborted else 0


def cmd_lookup(args, cfg) -> int:
    plate = args.plate.strip().upper()
    lookup = create_lookup(cfg)
    store = EnrichedLogStore(args.log or config_mod.enriched_log_path(cfg))

    print(f"[Lookup] Fetching details for: {plate}")
    record = VehicleRecord.build(plate, lookup(plate))
    if record.found:
        print(f"[Lookup] Owner: {record.owner_name}")
        print(f"[Lookup] Model: {record.vehicle_model}")
        print(f"[Lookup] Registered: {record.registration_date}")
    else:
        print(f"[Lookup] {plate}: no vehicle data found")

    store.append(record)
    print(f"[Lookup] Saved to {store.path}")
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "watch": cmd_watch,
    "enrich": cmd_enrich,
    "lookup": cmd_lookup,
}


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        # enrich / lookup never touch the camera or the detector
        cfg = config_mod.load_config(args.config, validate=args.command in ("serve", "watch"))
        return COMMANDS[args.command](args, cfg)
    except ConfigError as e:
        print(f"[Config] {e}", file=sys.stderr)
        return 2
    except AnprError as e:
        print(f"[Error] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
