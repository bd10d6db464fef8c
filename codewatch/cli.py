"""
codewatch/cli.py
Command-line interface for codewatch.
Works on Windows, Linux and Mac.

USAGE:
  python -m codewatch.cli --monitor
  python -m codewatch.cli --monitor --backend ocr --interval 3
  python -m codewatch.cli --image screenshot.png
  python -m codewatch.cli --text "Bank: your code is 123-456"
  python -m codewatch.cli --list-models

EXAMPLES:
  # Watch WhatsApp Web on the primary display, write CSV on exit
  python -m codewatch.cli --monitor --export codes.csv

  # Same, to export_path from codewatch_config.json
  python -m codewatch.cli --monitor --export

  # Offline, no LLM: Tesseract on a saved screenshot
  python -m codewatch.cli --image chat.png --backend ocr
"""

import argparse
import logging
import mimetypes
import sys
import time
from pathlib import Path
from typing import List

from codewatch.api import CodeWatchAPI
from codewatch.config import BACKENDS, build_backend, ensure_config
from codewatch.errors import BackendError, CaptureUnavailable
from codewatch.models.record import ExtractedRecord

logger = logging.getLogger(__name__)

# ANSI colors
GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'


def main():
    parser = argparse.ArgumentParser(
        prog        = 'codewatch',
        description = 'codewatch — extract 6-digit verification codes and senders from your screen',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
PRIVACY NOTICE:
  With --backend ocr, or a local Ollama host, screenshots never leave this device.
  Extracted codes are kept in memory only unless you pass --export.
        """
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        '--monitor',
        action  = 'store_true',
        help    = 'Capture the screen periodically until Ctrl-C',
    )
    source.add_argument(
        '--image', '-i',
        type    = Path,
        help    = 'Extract from a screenshot file',
    )
    source.add_argument(
        '--text', '-t',
        help    = 'Extract from pasted text',
    )
    source.add_argument(
        '--text-file',
        type    = Path,
        help    = 'Extract from a text file',
    )
    source.add_argument(
        '--list-models',
        action  = 'store_true',
        help    = 'List locally available Ollama models and exit',
    )
    parser.add_argument(
        '--backend', '-b',
        choices = BACKENDS,
        help    = 'Extraction backend (default: from config, else ollama)',
    )
    parser.add_argument(
        '--model', '-m',
        help    = 'Ollama vision model name (default: llama3.2-vision)',
    )
    parser.add_argument(
        '--ollama-host',
        help    = 'Ollama host URL (default: http://localhost:11434)',
    )
    parser.add_argument(
        '--interval',
        type    = float,
        help    = 'Seconds between captures in --monitor mode (default: 5)',
    )
    parser.add_argument(
        '--monitor-index',
        type    = int,
        help    = 'Display to capture: 1 = primary, 0 = all displays combined',
    )
    parser.add_argument(
        '--export', '-o',
        nargs   = '?',
        const   = '',
        metavar = 'PATH',
        help    = 'Write accepted records to CSV when done (no PATH: export_path from config)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action  = 'store_true',
        help    = 'Enable debug logging',
    )

    args = parser.parse_args()

    # ── LOGGING SETUP ────────────────────────────────────────
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level   = log_level,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    config = ensure_config()
    for key, value in (
        ('backend',              args.backend),
        ('model',                args.model),
        ('ollama_host',          args.ollama_host),
        ('capture_interval_sec', args.interval),
        ('monitor_index',        args.monitor_index),
    ):
        if value is not None:
            config[key] = value

    # ── LIST MODELS ──────────────────────────────────────────
    if args.list_models:
        from codewatch.backends.ollama_adapter import OllamaVisionAdapter
        adapter = OllamaVisionAdapter(host=config['ollama_host'])
        models  = adapter.list_available_models()
        if models:
            _print(f"\n{BOLD}Available Ollama models:{RESET}")
            for m in models:
                _print(f"  • {m}")
        else:
            _print(f"{YELLOW}No models found. Is Ollama running?{RESET}")
        sys.exit(0)

    if not (args.monitor or args.image or args.text or args.text_file):
        parser.error('one of --monitor, --image, --text, --text-file is required')

    backend = build_backend(config)
    if not backend.is_available():
        _print(f"{RED}Error: backend '{backend.name}' is not available.{RESET}")
        if backend.name == 'ollama':
            _print(f"  Start Ollama, then run: ollama pull {config['model']}")
        else:
            _print("  Install Tesseract and make sure it is on PATH.")
        sys.exit(1)

    api = CodeWatchAPI(backend, config=config)
    api.add_listener(_print_records)

    _print(f"Backend : {CYAN}{backend.name}{RESET}")
    if backend.name == 'ollama':
        _print(f"Model   : {CYAN}{config['model']}{RESET}")
    _print("")

    # ── RUN ──────────────────────────────────────────────────
    if args.monitor:
        _run_monitor(api)
    else:
        _run_once(api, args)

    # ── SUMMARY / EXPORT ─────────────────────────────────────
    _print(f"\n{BOLD}{GREEN}✓ Done{RESET} — {len(api.store)} code(s) collected")
    if args.export is not None:
        export_path = Path(args.export or config['export_path'])
        api.export_csv(path=export_path)
        _ok(f"CSV written to {export_path.resolve()}")


def _run_monitor(api: CodeWatchAPI) -> None:
    try:
        api.start_monitor()
    except CaptureUnavailable as e:
        _print(f"{RED}Error: screen capture unavailable: {e}{RESET}")
        sys.exit(1)

    _step(f"Monitoring — capturing every {api.loop.interval_sec:g}s. Ctrl-C to stop.")
    try:
        while api.loop.running:
            time.sleep(0.5)
        _print(f"{YELLOW}Capture source ended.{RESET}")
    except KeyboardInterrupt:
        _print("")
    finally:
        api.stop_monitor()


def _run_once(api: CodeWatchAPI, args) -> None:
    try:
        if args.image:
            if not args.image.exists():
                _print(f"{RED}Error: File not found: {args.image}{RESET}")
                sys.exit(1)
            mime = mimetypes.guess_type(args.image.name)[0] or 'image/png'
            _step(f"Analyzing {args.image.name}...")
            summary = api.submit_image(args.image.read_bytes(), mime)
        else:
            text = args.text if args.text is not None else args.text_file.read_text(encoding='utf-8')
            _step("Analyzing text...")
            summary = api.submit_text(text)
    except (ValueError, OSError) as e:
        _print(f"{RED}Error: {e}{RESET}")
        sys.exit(1)
    except BackendError as e:
        _print(f"{RED}{api.session.error_message}{RESET}")
        logger.debug(f"Backend error detail: {e}")
        sys.exit(1)

    if not summary['accepted']:
        _print(f"  {YELLOW}No 6-digit codes found.{RESET}")


# ── PRINT HELPERS ────────────────────────────────────────────

def _print_records(records: List[ExtractedRecord]) -> None:
    for r in records:
        stamp = time.strftime('%H:%M:%S', time.localtime(r.timestamp_ms / 1000))
        _ok(f"{BOLD}{r.code}{RESET}  {r.sender}  {CYAN}[{stamp}]{RESET}")
        if r.original_message:
            _print(f"      {r.original_message[:100]}")

def _step(msg):  _print(f"  {CYAN}→{RESET} {msg}")
def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)


if __name__ == '__main__':
    main()
