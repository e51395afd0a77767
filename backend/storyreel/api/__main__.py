"""API server entry point for python -m storyreel.api"""
import logging

import uvicorn

from storyreel.config import settings

if __name__ == "__main__":
    logging.basicConfig(
        level=settings.server.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "storyreel.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
