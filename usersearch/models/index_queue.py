"""
Index Queue Model.

A row of ``index_queue``: a document a transaction promised to (re)index
that has not been confirmed by the store yet.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel


class QueueStatus(StrEnum):
    """``PENDING`` until a first attempt fails, ``FAILED`` afterwards."""

    PENDING = "pending"
    FAILED = "failed"


class IndexQueueItem(BaseModel):
    id: int
    doc_type: str
    doc_id: str
    status: QueueStatus = QueueStatus.PENDING
    created_at: Optional[datetime] = None
    attempted_at: Optional[datetime] = None
    error_message: Optional[str] = None
