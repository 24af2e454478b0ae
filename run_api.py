#!/usr/bin/env python3
"""
Startup script for the Safe Transit API server.
"""

from safetransit.main import run_api_server

if __name__ == "__main__":
    raise SystemExit(run_api_server())
