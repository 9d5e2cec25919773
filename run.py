#!/usr/bin/env python3
"""
ERP Core Entry Point

Starts the FastAPI server with host, port and log level taken from the
ERP_* environment configuration.
"""

import sys

from erp_core.api import run_server
from erp_core.config import get_config
from erp_core.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_file=config.log_file)

    print("Starting ERP Core...")
    print(f"Database: {config.database_path if config.use_sqlite else 'in-memory'}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down ERP Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
