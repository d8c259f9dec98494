"""
main.py: Server launcher and entry point.

Run this file to start the telemetry core:

    python main.py

The state surface is served at http://127.0.0.1:8000/state

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import uvicorn

from enrollment_telemetry.utils.config import get_settings


HOST = "127.0.0.1"
PORT = 8000


def main() -> None:
    """Start the telemetry core server."""
    settings = get_settings()
    print("=" * 60)
    print(f"  {settings.app_name} v{settings.app_version}")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  State    : http://{HOST}:{PORT}/state")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print(f"  Mode     : {settings.data_mode}")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Blocks until CTRL+C
    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
