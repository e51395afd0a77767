"""Last-frame extraction for video continuation.

The ffmpeg availability probe runs once per process and is cached behind a
lock. When ffmpeg is missing, extraction reports that the client has to
extract the frame itself instead of raising.
"""

import asyncio
import logging
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from storyreel.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ExtractedFrame:
    success: bool
    frame_path: Optional[Path] = None
    needs_client_extraction: bool = False
    error: Optional[str] = None


class FrameExtractor:
    """Extract the final frame of a video with ffmpeg."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", timeout: int = 60):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout
        self._available: Optional[bool] = None
        self._lock = threading.Lock()

    def _probe(self) -> bool:
        try:
            result = subprocess.run(
                [self.ffmpeg_bin, "-version"],
                capture_output=True,
                check=True,
                text=True,
                timeout=10,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
            return False
        logger.info("ffmpeg validated: %s", result.stdout.split("\n")[0])
        return True

    def initialize(self) -> bool:
        """Probe ffmpeg if not done yet and return the cached result."""
        with self._lock:
            if self._available is None:
                self._available = self._probe()
            return self._available

    def is_available(self) -> bool:
        if self._available is None:
            return self.initialize()
        return self._available

    async def check_available(self) -> bool:
        """Like is_available, but a first probe runs in a worker thread."""
        if self._available is None:
            return await asyncio.to_thread(self.initialize)
        return self._available

    def reset(self) -> None:
        """Forget the cached probe result."""
        with self._lock:
            self._available = None

    def _run_extract(self, source: str, out_path: Path) -> None:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        subprocess.run(
            [
                self.ffmpeg_bin,
                "-y",
                "-sseof", "-0.1",  # seek to 0.1s before the end
                "-i", source,
                "-frames:v", "1",
                "-q:v", "2",
                str(out_path),
            ],
            check=True,
            capture_output=True,
            timeout=self.timeout,
        )

    async def extract_last_frame(self, source: str | Path, out_path: Path) -> ExtractedFrame:
        """Write the last frame of ``source`` (path or URL) to ``out_path``.

        Returns:
            ExtractedFrame; ``needs_client_extraction`` is set when ffmpeg
            is not installed.
        """
        if not await self.check_available():
            return ExtractedFrame(
                success=False,
                needs_client_extraction=True,
                error="ffmpeg is not available on the server",
            )

        try:
            await asyncio.to_thread(self._run_extract, str(source), out_path)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
            logger.warning("Last-frame extraction failed for %s: %s", source, stderr[-500:])
            return ExtractedFrame(success=False, error=f"ffmpeg failed: {stderr[-200:]}")
        except subprocess.TimeoutExpired:
            logger.warning("Last-frame extraction timed out for %s", source)
            return ExtractedFrame(success=False, error="ffmpeg timed out")

        if not out_path.exists():
            return ExtractedFrame(success=False, error="ffmpeg produced no frame")

        logger.info("Extracted last frame of %s -> %s", source, out_path)
        return ExtractedFrame(success=True, frame_path=out_path)


# Process-wide instance
frame_extractor = FrameExtractor(timeout=settings.pipeline.ffmpeg_timeout)
