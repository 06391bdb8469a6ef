#!/usr/bin/env python3
"""
Server startup wrapper.

Runs the app factory with an empty handler registry. Applications that
register handlers should call create_app themselves and serve the result.
"""
import sys

if __name__ == "__main__":
    print("[stripe_sync] Starting webhook server on http://localhost:8000")
    try:
        import uvicorn
        uvicorn.run(
            "stripe_sync.main:create_app",
            factory=True,
            host="0.0.0.0",
            port=8000,
            reload=False,
            log_level="info",
            access_log=True,
        )
    except KeyboardInterrupt:
        print("\n[stripe_sync] Shutting down...")
        sys.exit(0)
