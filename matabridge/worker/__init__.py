from __future__ import annotations

from .dispatcher import UNAUTHORIZED_ORIGIN, BackgroundWorker, HandlerSpec, Sender
from .tabs import Tab, TabError, TabRegistry, url_matches

__all__ = [
    "BackgroundWorker",
    "HandlerSpec",
    "Sender",
    "Tab",
    "TabError",
    "TabRegistry",
    "UNAUTHORIZED_ORIGIN",
    "url_matches",
]
