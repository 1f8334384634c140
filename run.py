#!/usr/bin/env python3
"""
Accounting Core Entry Point

Starts the FastAPI server with settings from LEDGER_* environment variables.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from accounting_core.api import run_server
from accounting_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Accounting Core...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(config)
    except KeyboardInterrupt:
        print("\nShutting down Accounting Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
