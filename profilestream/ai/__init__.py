"""Gemini access for chunked profile analysis."""

from profilestream.ai.client import AIClient, AIClientError, StructuredAIResponse
from profilestream.ai.inference import StreamingProfileAnalyzer

__all__ = [
    "AIClient",
    "AIClientError",
    "StructuredAIResponse",
    "StreamingProfileAnalyzer",
]
