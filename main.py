"""
Document Capture Service Entry Point

Run with: uvicorn main:app --port 8081
Or: python main.py
"""

import os
from pathlib import Path

# Load environment variables FIRST so settings see them
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env", override=True)

from doccapture.config import EngineSettings
from doccapture.logging_config import setup_logging
from doccapture.service import app

setup_logging(EngineSettings.from_env().log_dir)

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("DOCCAPTURE_SERVICE_PORT", 8081))
    uvicorn.run(app, host="0.0.0.0", port=port)
