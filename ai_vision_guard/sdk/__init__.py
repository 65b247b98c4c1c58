"""
SDK for AI Vision Guard.

Provides programmatic access to the model API and dedup-aware analysis.
"""

from .service import AnalysisResult, ImageAnalysisService
from .vision_client import ImageMimeType, ModelName, VisionChatClient

__all__ = [
    "AnalysisResult",
    "ImageAnalysisService",
    "ImageMimeType",
    "ModelName",
    "VisionChatClient",
]
