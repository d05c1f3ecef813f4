# ==============================================================================
# FILE: run_server.py
# DESCRIPTION: Entry point to run the FastAPI server with Uvicorn.
# ==============================================================================
import os

import uvicorn
from shared_app import app

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_level="info",
        access_log=True,
        loop="asyncio"
    )
