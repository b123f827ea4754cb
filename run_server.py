"""Run the Flowstack server from a source checkout"""

import os
import sys

# Add src directory to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from main import app
from core.config import settings
import uvicorn

if __name__ == "__main__":
    print(f"Starting Flowstack Server on port {settings.PORT}...")
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.PORT,
        reload=False,
        log_config=None
    )
