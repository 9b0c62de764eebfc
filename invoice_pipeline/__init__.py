"""Invoice OCR and structured-extraction pipeline."""

__version__ = "1.0.0"
