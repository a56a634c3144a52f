"""CLI entry point: python main.py --port 3002"""

import argparse

import uvicorn

from src.api import create_app
from src.settings import get_settings


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Staff Notify - real-time notification WebSocket server"
    )
    parser.add_argument(
        "--host", default=settings.host,
        help=f"Interface to bind (default: {settings.host})"
    )
    parser.add_argument(
        "--port", type=int, default=settings.port,
        help=f"Port to listen on (default: {settings.port})"
    )
    parser.add_argument(
        "--log-level", default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help=f"Log level (default: {settings.log_level})"
    )
    args = parser.parse_args()

    settings = settings.model_copy(update={"log_level": args.log_level})
    app = create_app(settings)

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
