# mjpeg.py
# MJPEG preview of the runner's latest frame with the plate overlay

import asyncio
from typing import AsyncGenerator, Optional

from ..annotate import draw_readings, encode_jpeg


class MJPEGStreamer:
    """
    Reads the runner's frame slot, never the stream itself: the preview
    cannot slow acquisition down. Each client gets its own generator and
    only sees frames newer than the one it last sent.
    """

    def __init__(self, runner, jpeg_quality: int = 75, max_fps: float = 15.0):
        self.runner = runner
        self.jpeg_quality = jpeg_quality
        self.frame_interval = 1.0 / max_fps if max_fps > 0 else 0.0
        self.frames_served = 0
        self._running = True

    def render(self) -> Optional[bytes]:
        """Latest frame + latest readings as JPEG, or None before the first frame."""
        frame = self.runner.latest_frame()
        if frame is None:
            return None
        draw_readings(frame, self.runner.latest_readings())
        return encode_jpeg(frame, self.jpeg_quality)

    def get_snapshot(self) -> Optional[bytes]:
        return self.render()

    async def generate(self) -> AsyncGenerator[bytes, None]:
        slot = self.runner.source.slot
        last_seq = -1
        loop = asyncio.get_running_loop()

        while self._running:
            seq = slot.seq
            if seq == last_seq:
                await asyncio.sleep(self.frame_interval or 0.05)
                continue

            jpeg = await loop.run_in_executor(None, self.render)
            if jpeg is None:
                await asyncio.sleep(0.2)
                continue
            last_seq = seq
            self.frames_served += 1

            yield (
                b"--frame\r\n"
                b"Content-Type: image/jpeg\r\n\r\n" + jpeg + b"\r\n"
            )
            if self.frame_interval:
                await asyncio.sleep(self.frame_interval)

    def stop(self):
        self._running = False
