"""sitepulse: live telemetry snapshots and a cursor relay for a personal site.

The package is split into:
- ``sitepulse.core``      : contracts, history ring, sampler, position relay, settings
- ``sitepulse.producers`` : background pollers feeding external fragments into snapshots
- ``sitepulse.api``       : FastAPI gateway (SSE stream, history, WebSocket relay)
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.3.0"
