"""StoryReel - story to multi-scene video production pipeline.

This module provides the startup validation hook. Call
validate_dependencies() during application startup to probe optional
system tools before the first generation request arrives.
"""

import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> bool:
    """Probe system dependencies used by the pipeline.

    ffmpeg is optional: without it, last-frame extraction falls back to the
    client and project stitching is unavailable. The probe result is cached
    process-wide by the frame extractor.

    Returns:
        True if ffmpeg is available on PATH.
    """
    from storyreel.services.frame_extractor import frame_extractor

    available = frame_extractor.initialize()
    if not available:
        logger.warning(
            "ffmpeg not found on PATH. Last-frame extraction will be delegated "
            "to the client and combine-videos is disabled.\n"
            "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "macOS: brew install ffmpeg"
        )
    return available
