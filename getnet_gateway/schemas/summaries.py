"""Batch job summaries returned by the cron endpoint."""

from typing import List, Optional

from pydantic import BaseModel, Field

from getnet_gateway.schemas.payments import StatusTransition


class ItemError(BaseModel):
    request_id: str
    error: str


class ReconciliationSummary(BaseModel):
    days_back: int
    checked: int = 0
    updated: int = 0
    transitions: List[StatusTransition] = Field(default_factory=list)
    errors: List[ItemError] = Field(default_factory=list)


class SweepSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[ItemError] = Field(default_factory=list)


class BatchSummary(BaseModel):
    success: bool = True
    reconciliation: Optional[ReconciliationSummary] = None
    callbacks: Optional[SweepSummary] = None
    duration: float = Field(default=0.0, description="Wall time in seconds")
    error: Optional[str] = None
