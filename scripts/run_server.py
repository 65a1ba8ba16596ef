"""Script to launch the StoryLoom server."""

from __future__ import annotations

import argparse
import os
import sys

import uvicorn

# Ensure src/ is on sys.path (so imports work when run without installing)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from storyloom.config import load_settings  # noqa: E402
from storyloom.logsetup import setup_logging  # noqa: E402
from storyloom.server import create_app  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the StoryLoom co-writing server.")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config (default: $STORYLOOM_CONFIG or config/default.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST", "127.0.0.1"),
        help="Host to bind the server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8000")),
        help="Port to bind the server to (default: 8000)",
    )
    args = parser.parse_args()

    settings = load_settings(args.config)
    setup_logging(settings.log_level, settings.log_dir)
    app = create_app(settings=settings)

    # One process only: the session lives in memory.
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
