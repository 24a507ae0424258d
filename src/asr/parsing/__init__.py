"""
ASR Parsing Layer

Full-text extraction from PDFs.
"""

from asr.parsing.pdf import PdfTextExtractor

__all__ = ["PdfTextExtractor"]
