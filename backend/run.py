"""Run script with proper environment loading"""
import os
import sys
from pathlib import Path

# Make the backend directory importable
BACKEND_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(BACKEND_DIR))

# Load environment variables
from dotenv import load_dotenv

load_dotenv(BACKEND_DIR.parent / ".env", override=False)

# Set working directory to backend
os.chdir(BACKEND_DIR)

if __name__ == "__main__":
    import uvicorn

    from intakeflow.core.config import get_settings

    settings = get_settings()

    # Import app directly instead of using string to avoid path issues
    from main import app

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
