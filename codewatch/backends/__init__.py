"""
codewatch/backends — interchangeable extraction strategies.

  ollama  OllamaVisionAdapter  vision LLM, schema-constrained JSON
  ocr     TesseractBackend     Tesseract + regex heuristics
"""

from codewatch.backends.base import ExtractionBackend

__all__ = ["ExtractionBackend"]
