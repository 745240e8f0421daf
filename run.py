#!/usr/bin/env python3
"""
Receipt Expense Flow Service
Main execution script - Run this file to start the API server
"""

import os
import sys
from pathlib import Path

# Add current directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from app.main import create_app
import uvicorn


def main():
    """Main entry point for the Receipt Expense Flow Service"""
    print("🧾 Receipt Expense Flow Service")
    print("=" * 50)

    port_env = os.environ.get("PORT")
    port = 8000
    if port_env:
        try:
            port = int(port_env)
            print(f"📡 Using PORT: {port}")
        except ValueError:
            print(f"⚠️ Invalid PORT value: {port_env}, using default 8000")
    else:
        print("📡 No PORT environment variable, using default 8000")

    print(f"📚 API Documentation: http://localhost:{port}/docs")
    print("=" * 50)

    app = create_app()
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
