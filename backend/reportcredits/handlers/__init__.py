"""Analysis handlers"""

from .base import AnalysisHandler
from .registry import HandlerRegistry
from .vehicle import default_handlers

__all__ = [
    "AnalysisHandler",
    "HandlerRegistry",
    "default_handlers",
]
