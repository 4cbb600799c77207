# server.py
# FastAPI control surface: capture / live / enrich / reset + preview + WebSocket

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse

from .integration import PipelineEvents
from .mjpeg import MJPEGStreamer
from .schemas import ActionResponse, HealthResponse, PipelineStatus, PlateList
from .websocket import WebSocketManager

NO_FRAME_MESSAGE = "Error: No frame available to capture."


def create_app(runner, jpeg_quality: int = 75, manage_runner: bool = False) -> FastAPI:
    """
    App bound to one PipelineRunner.

    manage_runner=True starts the runner with the app and stops it on
    shutdown (the `serve` command). Otherwise the caller owns the lifecycle.
    """
    ws_manager = WebSocketManager()
    events = PipelineEvents(ws_manager)
    streamer = MJPEGStreamer(runner, jpeg_quality=jpeg_quality)

    # ============================================================
    # Lifespan
    # ============================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        print("[API] Starting...")
        events.attach(asyncio.get_running_loop())
        if runner.status is not None:
            runner.status.subscribe(events.status_sink)
        runner.orchestrator.add_listener(events.plate_committed)
        if manage_runner:
            runner.start()
        yield
        print("[API] Shutting down...")
        streamer.stop()
        if manage_runner:
            runner.stop()
        runner.orchestrator.remove_listener(events.plate_committed)
        if runner.status is not None:
            runner.status.unsubscribe(events.status_sink)
        events.detach()

    app = FastAPI(
        title="ANPR Stream API",
        description="Live number plate recognition: capture, live scanning, enrichment",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.runner = runner
    app.state.ws_manager = ws_manager
    app.state.events = events
    app.state.streamer = streamer

    # ============================================================
    # System
    # ============================================================

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok",
            timestamp=datetime.now().isoformat(),
            source_state=runner.source.state.value,
            ws_connections=ws_manager.get_stats()["total_connections"],
        )

    @app.get("/api/status", response_model=PipelineStatus)
    async def status():
        return runner.snapshot()

    @app.get("/api/ws/stats")
    async def ws_stats():
        return ws_manager.get_stats()

    # ============================================================
    # Actions
    # ============================================================

    @app.post("/api/capture", response_model=ActionResponse, status_code=202)
    async def capture():
        """One-shot: snapshot the latest frame and process it on a worker."""
        if runner.capture_busy:
            raise HTTPException(409, "Capture already in progress")
        if not runner.capture_and_process():
            if runner.capture_busy:
                raise HTTPException(409, "Capture already in progress")
            raise HTTPException(409, NO_FRAME_MESSAGE)
        events.system_event("capture_started")
        return ActionResponse(status="accepted")

    @app.post("/api/live/start", response_model=ActionResponse)
    async def live_start():
        if not runner.start_live():
            if runner.live_stopping:
                return ActionResponse(status="stopping", detail="Previous live scan is finishing its current frame")
            return ActionResponse(status="running", detail="Live scanning already running")
        events.system_event("live_started")
        return ActionResponse(status="started")

    @app.post("/api/live/stop", response_model=ActionResponse)
    async def live_stop():
        if not runner.live_running:
            return ActionResponse(status="stopped", detail="Live scanning was not running")
        await asyncio.get_running_loop().run_in_executor(None, runner.stop_live)
        events.system_event("live_stopped")
        return ActionResponse(status="stopped")

    @app.post("/api/enrich", response_model=ActionResponse, status_code=202)
    async def enrich():
        if runner.batch_busy:
            raise HTTPException(409, "Enrichment already in progress")
        if not runner.run_batch():
            raise HTTPException(409, "Enrichment not available")
        events.system_event("enrich_started")
        return ActionResponse(status="accepted")

    @app.post("/api/reset", response_model=ActionResponse)
    async def reset():
        runner.reset()
        events.system_event("session_reset")
        return ActionResponse(status="reset")

    # ============================================================
    # Plates
    # ============================================================

    @app.get("/api/plates", response_model=PlateList)
    async def plates():
        session = runner.orchestrator.session.snapshot()
        return PlateList(
            total=len(session),
            plates=session,
            recent=runner.orchestrator.recent(),
        )

    # ============================================================
    # Streaming
    # ============================================================

    @app.get("/api/stream/mjpeg")
    async def stream_mjpeg():
        if runner.latest_frame() is None:
            raise HTTPException(404, "No frame yet")
        return StreamingResponse(
            streamer.generate(),
            media_type="multipart/x-mixed-replace; boundary=frame",
        )

    @app.get("/api/stream/snapshot")
    async def stream_snapshot():
        jpeg = await asyncio.get_running_loop().run_in_executor(None, streamer.get_snapshot)
        if jpeg is None:
            raise HTTPException(404, "No frame yet")
        return Response(content=jpeg, media_type="image/jpeg")

    # ============================================================
    # WebSocket
    # ============================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                data = await websocket.receive_text()
                await ws_manager.handle_message(websocket, data)
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)

    return app


# ============================================================
# Run
# ============================================================

def start_server(runner, host: str = "0.0.0.0", port: int = 8000, jpeg_quality: int = 75):
    import uvicorn

    print(f"[API] REST: http://{host}:{port}/api  WebSocket: ws://{host}:{port}/ws  Docs: http://{host}:{port}/docs")
    app = create_app(runner, jpeg_quality=jpeg_quality, manage_runner=True)
    uvicorn.run(app, host=host, port=port)
