"""
codewatch/backends/ollama_adapter.py
Generative-model strategy: Ollama running a vision model.
The screenshot goes in `images`, the extraction rules in `system`, and a JSON
schema in `format` constrains the reply to a list of candidate records.

INSTALL:
  https://ollama.com/download
  ollama pull llama3.2-vision

RECOMMENDED MODELS:
  llama3.2-vision (11b) — best header/bubble reading
  qwen2.5vl:7b          — faster, fine for clean screenshots
  llava:7b              — low RAM fallback
"""

import base64
import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from codewatch.backends.base import SYSTEM_INSTRUCTION, ExtractionBackend
from codewatch.errors import BackendParseError, BackendTransportError
from codewatch.models.record import CandidateRecord

logger = logging.getLogger(__name__)

IMAGE_PROMPT = (
    "Analyze this chat screen. Extract any 6-digit verification codes and the sender."
)
TEXT_PROMPT = "Extract 6-digit codes and senders from this text dump:\n\n{text}"

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "records": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "sender": {
                        "type": "string",
                        "description": "Name or phone number of the sender. Check chat header first.",
                    },
                    "code": {
                        "type": "string",
                        "description": "The clean 6-digit code.",
                    },
                    "originalMessage": {
                        "type": "string",
                        "description": "The text context surrounding the code.",
                    },
                    "confidence": {
                        "type": "number",
                        "description": "Confidence score between 0 and 1.",
                    },
                },
                "required": ["sender", "code", "originalMessage"],
            },
        },
    },
    "required": ["records"],
}


class CandidatePayload(BaseModel):
    """One item of the model's reply, as it appears on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    sender:           str
    code:             str
    original_message: str             = Field(alias="originalMessage")
    confidence:       Optional[float] = None

    def to_candidate(self) -> CandidateRecord:
        return CandidateRecord(
            sender           = self.sender,
            code             = self.code,
            original_message = self.original_message,
            confidence       = self.confidence,
        )


class OllamaVisionAdapter(ExtractionBackend):

    name = 'ollama'

    def __init__(
        self,
        model:       str   = 'llama3.2-vision',
        host:        str   = 'http://localhost:11434',
        timeout_sec: int   = 120,
        temperature: float = 0.1,
    ):
        self.model       = model
        self.host        = host.rstrip('/')
        self.timeout_sec = timeout_sec
        self.temperature = temperature

    # ── AVAILABILITY CHECK ───────────────────────────────────
    def is_available(self) -> bool:
        """Ping Ollama and confirm the configured model is pulled."""
        try:
            models = self._tags()
        except BackendTransportError:
            logger.warning(
                "Ollama not reachable at " + self.host +
                ". Start Ollama or check if it's running."
            )
            return False

        # Exact match or family match (e.g. "llava" matches "llava:7b")
        available = any(
            m == self.model or m.startswith(self.model.split(':')[0])
            for m in models
        )
        if not available:
            logger.warning(
                f"Model '{self.model}' not found in Ollama. "
                f"Available: {models}. "
                f"Run: ollama pull {self.model}"
            )
        return available

    # ── EXTRACTION ───────────────────────────────────────────
    def analyze_image(self, image_bytes: bytes, mime_type: str) -> List[CandidateRecord]:
        if not image_bytes:
            raise BackendParseError("empty image payload")
        logger.debug(f"Ollama image request: {len(image_bytes)} bytes ({mime_type})")
        payload = self._payload(
            prompt = IMAGE_PROMPT,
            images = [base64.b64encode(image_bytes).decode('ascii')],
        )
        return self._parse_response(self._generate(payload))

    def extract_from_text(self, text: str) -> List[CandidateRecord]:
        payload = self._payload(prompt=TEXT_PROMPT.format(text=text))
        return self._parse_response(self._generate(payload))

    def _payload(self, prompt: str, images: Optional[List[str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'model':   self.model,
            'system':  SYSTEM_INSTRUCTION,
            'prompt':  prompt,
            'stream':  False,
            'format':  RESPONSE_SCHEMA,    # structured output — reply must match schema
            'options': {
                'temperature': self.temperature,
            },
        }
        if images:
            payload['images'] = images
        return payload

    # ── TRANSPORT ────────────────────────────────────────────
    def _generate(self, payload: Dict[str, Any]) -> str:
        """POST /api/generate. Returns the model's response text."""
        data = self._request('/api/generate', payload, timeout=self.timeout_sec)
        if 'error' in data:
            raise BackendTransportError(f"Ollama error: {data['error']}")
        return str(data.get('response', '')).strip()

    def _tags(self) -> List[str]:
        data = self._request('/api/tags', None, timeout=5)
        return [m['name'] for m in data.get('models', []) if 'name' in m]

    def _request(self, path: str, payload: Optional[Dict[str, Any]], timeout: float) -> Dict[str, Any]:
        body = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = urllib.request.Request(
            f"{self.host}{path}",
            data    = body,
            headers = {'Content-Type': 'application/json'},
            method  = 'POST' if body is not None else 'GET',
        )
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise BackendTransportError(f"Ollama HTTP {e.code} on {path}") from e
        except (urllib.error.URLError, http.client.HTTPException,
                socket.timeout, ConnectionError) as e:
            raise BackendTransportError(f"Ollama request failed: {e}") from e

        try:
            data = json.loads(raw.decode('utf-8'))
        except UnicodeDecodeError as e:
            raise BackendParseError(f"Ollama reply is not UTF-8: {e}") from e
        except json.JSONDecodeError as e:
            raise BackendParseError(f"Ollama returned non-JSON envelope: {e}") from e
        if not isinstance(data, dict):
            raise BackendParseError("Ollama envelope is not an object")
        return data

    # ── RESPONSE PARSER ──────────────────────────────────────
    def _parse_response(self, text: str) -> List[CandidateRecord]:
        """
        Parse the schema-constrained reply into CandidateRecords.
        Handles models that add markdown fences despite format=schema,
        and models that answer with a bare array instead of {"records": [...]}.
        Empty reply means no codes on screen.
        """
        clean = text.strip()
        if clean.startswith('```'):
            parts = clean.split('```')
            if len(parts) >= 2:
                clean = parts[1]
                if clean.startswith('json'):
                    clean = clean[4:]
        clean = clean.strip()
        if not clean:
            return []

        try:
            data = json.loads(clean)
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse Ollama response: {e}\nRaw: {text[:200]}")
            raise BackendParseError(f"invalid JSON from model: {e}") from e

        if isinstance(data, dict):
            items = data.get('records')
        else:
            items = data
        if not isinstance(items, list):
            raise BackendParseError("model reply has no records array")

        try:
            parsed = [CandidatePayload.model_validate(item) for item in items]
        except ValidationError as e:
            raise BackendParseError(f"model reply failed schema validation: {e}") from e

        return [p.to_candidate() for p in parsed]

    # ── MODEL MANAGEMENT HELPERS ─────────────────────────────
    def list_available_models(self) -> List[str]:
        """Return list of locally available Ollama model names."""
        try:
            return self._tags()
        except (BackendTransportError, BackendParseError):
            return []
