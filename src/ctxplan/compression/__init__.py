"""Document compression: techniques and the ladder that applies them."""

from ctxplan.compression.models import LADDER, CompressionCandidate, Technique
from ctxplan.compression.pipeline import CompressionCache, CompressionPipeline
from ctxplan.compression.techniques import Summarizer

__all__ = [
    "LADDER",
    "CompressionCache",
    "CompressionCandidate",
    "CompressionPipeline",
    "Summarizer",
    "Technique",
]
