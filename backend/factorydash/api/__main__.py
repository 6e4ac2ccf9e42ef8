"""API server entry point for python -m factorydash.api"""
import uvicorn

from factorydash import configure_logging
from factorydash.config import settings

if __name__ == "__main__":
    configure_logging(settings.logging.level)
    uvicorn.run(
        "factorydash.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
