#!/usr/bin/env python3
"""
run_codewatch.py — Start codewatch from the project root.
Uses codewatch_config.json (created on first save, defaults otherwise).

  python run_codewatch.py           # live monitor in the terminal (CLI)
  python run_codewatch.py --api     # start the local API server for the browser UI
"""

import argparse
import logging
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="codewatch — live verification-code extractor")
    parser.add_argument("--api", action="store_true", help="Start API server")
    parser.add_argument("--port", type=int, default=8766, help="API port (default: 8766)")
    args = parser.parse_args()

    root = Path(__file__).parent
    sys.path.insert(0, str(root))

    if args.api:
        import uvicorn

        logging.basicConfig(
            level   = logging.INFO,
            format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt = '%H:%M:%S',
        )
        print(f"Starting API at http://127.0.0.1:{args.port}")
        uvicorn.run("codewatch.api:app", host="127.0.0.1", port=args.port)
        return

    from codewatch.cli import main as cli_main
    sys.argv = [sys.argv[0], "--monitor"]
    cli_main()


if __name__ == "__main__":
    main()
