"""Entry point for the CampusLink API server.

Usage:
    python -m campuslink [options]

Options:
    --host HOST         Bind address (default: 0.0.0.0)
    --port PORT         HTTP port (default: 8000)
    --headful           Show the automated browser window
    --log-dir DIR       Directory for log files (default: CAMPUSLINK_LOG_DIR or ./logs)
"""

import argparse

import uvicorn

from .config import LinkConfig
from .main import create_app


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CampusLink API Server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--log-dir", default="", help="Directory for log files")
    return parser.parse_args()


def main():
    args = parse_args()
    config = LinkConfig(log_dir=args.log_dir)
    if args.headful:
        config.headless = False

    uvicorn.run(
        create_app(config),
        host=args.host,
        port=args.port,
        log_level="warning",
    )


if __name__ == "__main__":
    main()
