"""
Hand-written bindings over the coalescing cache, one class per ESI namespace.
"""

from .corporation import Corporation
from .location import Location

__all__ = ["Corporation", "Location"]
