"""
ASR LLM Layer

Chat-completion providers used by the LLM-backed oracles.
"""

from asr.llm.base import BaseLLMProvider, LLMResponse, Message, build_messages
from asr.llm.factory import create_provider

__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "Message",
    "build_messages",
    "create_provider",
]
