"""
Model session backends for localdet.

Kept in a separate module so pre/post-processing can be imported without loading an
inference runtime.
"""

from __future__ import annotations

__all__ = []
