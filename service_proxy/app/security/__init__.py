"""
Security gate package: origin allowlist and shared proxy key.
"""

from .gate import SecurityGate

__all__ = ["SecurityGate"]
