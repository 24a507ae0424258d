"""
ASR Consensus Layer

Three-reviewer majority rule with escalation to an adjudicator.
"""

from asr.consensus.engine import PANEL_SIZE, build_verdict, resolve

__all__ = ["PANEL_SIZE", "resolve", "build_verdict"]
