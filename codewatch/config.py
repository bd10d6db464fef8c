"""
codewatch/config.py
JSON config persisted to codewatch_config.json in the project root.
Missing keys fall back to DEFAULT_CONFIG.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from codewatch.backends.base import ExtractionBackend

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "codewatch_config.json"

BACKENDS = ("ollama", "ocr")

DEFAULT_CONFIG = {
    "backend": "ollama",
    "model": "llama3.2-vision",
    "ollama_host": "http://localhost:11434",
    "timeout_sec": 120,
    "temperature": 0.1,
    "capture_interval_sec": 5.0,
    "monitor_index": 1,
    "jpeg_quality": 80,
    "ocr_lang": "eng",
    "tesseract_cmd": None,
    "export_path": "codewatch_export.csv",
}


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / CONFIG_FILENAME


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from codewatch_config.json. Returns defaults if missing."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to codewatch_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


def ensure_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load config and fill in what can be detected.
    Picks up tesseract from PATH when no explicit binary is set.
    """
    config = load_config(project_root)
    if config.get("backend") not in BACKENDS:
        logger.warning(f"Unknown backend {config.get('backend')!r} — using ollama")
        config["backend"] = "ollama"
    if config["backend"] == "ocr" and not config.get("tesseract_cmd"):
        found = shutil.which("tesseract")
        if found:
            config["tesseract_cmd"] = found
            logger.info(f"Auto-detected tesseract: {found}")
    return config


def build_backend(config: Dict[str, Any]) -> ExtractionBackend:
    """Instantiate the extraction strategy named by config['backend']."""
    backend = config.get("backend", "ollama")
    if backend == "ocr":
        from codewatch.backends.ocr_backend import TesseractBackend
        return TesseractBackend(
            lang          = config.get("ocr_lang", "eng"),
            tesseract_cmd = config.get("tesseract_cmd"),
        )
    if backend == "ollama":
        from codewatch.backends.ollama_adapter import OllamaVisionAdapter
        return OllamaVisionAdapter(
            model       = config.get("model", DEFAULT_CONFIG["model"]),
            host        = config.get("ollama_host", DEFAULT_CONFIG["ollama_host"]),
            timeout_sec = int(config.get("timeout_sec", 120)),
            temperature = float(config.get("temperature", 0.1)),
        )
    raise ValueError(f"Unknown backend: {backend!r} (expected one of {BACKENDS})")
