from invoice_pipeline.processors.extraction_step import run_extraction_step
from invoice_pipeline.processors.extractor import ExtractionOutcome, InvoiceExtractor
from invoice_pipeline.processors.ocr_step import run_ocr_step
from invoice_pipeline.processors.scoring import ConfidenceWeights, calculate_confidence

__all__ = [
    "ConfidenceWeights",
    "ExtractionOutcome",
    "InvoiceExtractor",
    "calculate_confidence",
    "run_extraction_step",
    "run_ocr_step",
]
