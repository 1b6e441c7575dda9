#!/usr/bin/env python
"""Run the SyncBridge API (webhooks, operator endpoints, scheduler)."""
import os

import uvicorn

if __name__ == "__main__":
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    print(f"Starting SyncBridge on {host}:{port}")

    # Single worker: the scheduler and the in-process queue live in the app process
    uvicorn.run("syncbridge.main:app", host=host, port=port, log_level=os.environ.get("LOG_LEVEL", "info").lower(), proxy_headers=True)
