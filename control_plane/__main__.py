"""
Run the Control Plane API server.

Usage:
    python -m control_plane [--host 0.0.0.0] [--port 8000]
"""
import argparse
import os

import uvicorn

from logging_setup import setup_logging
from voice_agent.config import load_local_env


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="control_plane", description="Voice agent control plane API")
    parser.add_argument("--host", default=os.getenv("CONTROL_PLANE_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("CONTROL_PLANE_PORT", "8000")))
    args = parser.parse_args(argv)

    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    load_local_env()

    # log_config=None keeps uvicorn on the JSON root handler
    uvicorn.run("control_plane.app:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
