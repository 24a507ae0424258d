"""
Automated Scoping Review (ASR)

Resumable literature screening pipeline: deduplication, three-reviewer
screening with consensus and adjudication, and a PRISMA-ScR funnel.
"""

__version__ = "0.1.0"

from asr.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
