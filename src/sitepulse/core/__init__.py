"""Core package initializer for sitepulse.

Settings live in ``sitepulse.core.settings``; the realtime primitives are in
``sitepulse.core.sampler`` and ``sitepulse.core.relay``.
"""

from __future__ import annotations

__all__ = ["__doc__"]
