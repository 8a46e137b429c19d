"""Start the API server: python -m lead_queue_engine.api"""

import uvicorn

from .config import settings

if __name__ == "__main__":
    uvicorn.run(
        "lead_queue_engine.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
