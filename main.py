"""Persona Chat: dev launcher. Starts the API server."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn

from persona_chat.config import load_settings


def main():
    settings = load_settings()  # .env + environment
    parser = argparse.ArgumentParser(description="Persona Chat dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server when source files change")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # The app reads DATA_DIR when persona_chat.app is imported
    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting Persona Chat on http://localhost:{args.port} ...")
    uvicorn.run(
        "persona_chat.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
