"""Identifier helpers for documents, graphs and budget reservations."""

from __future__ import annotations

import uuid
from typing import Literal

IdKind = Literal["doc", "graph", "rsv"]


def new_id(kind: IdKind) -> str:
    """Prefixed random identifier, e.g. ``graph_3f2a...``."""
    return f"{kind}_{uuid.uuid4().hex}"
