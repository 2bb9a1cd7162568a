from __future__ import annotations

from .cache import KeyCache, Source, SyncRecord
from .page import CustomEvent, Document, Element, Page
from .script import MARKER_ID, ContentScript, open_tab

__all__ = [
    "ContentScript",
    "CustomEvent",
    "Document",
    "Element",
    "KeyCache",
    "MARKER_ID",
    "Page",
    "Source",
    "SyncRecord",
    "open_tab",
]
