"""Development server for the chat relay."""

import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

sys.path.append(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("relay")

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info("Starting chat relay on port %d", port)
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
    )
