"""
Request validation package.
"""

from .request_validator import NormalizedRequest, RequestValidator

__all__ = ["NormalizedRequest", "RequestValidator"]
