#!/usr/bin/env python3
"""Start the API under uvicorn, honouring the PORT environment variable."""

import os
import sys

import uvicorn

port = os.environ.get("PORT", "8000")

try:
    port_int = int(port)
except ValueError:
    print(f"Warning: Invalid PORT value '{port}', using default 8000", file=sys.stderr)
    port_int = 8000

# The app must run in a single process: per-hawker schedulers live in memory.
if __name__ == "__main__":
    uvicorn.run(
        "src.hawkroute.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=port_int,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
