"""Observed microvm status models."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class VMState(str, Enum):
    """Observed lifecycle state of a microvm instance."""
    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    DELETED = "deleted"
    UNKNOWN = "unknown"


class InstanceHandle(BaseModel):
    """Runtime-side reference to a created instance."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Runtime instance identifier")
    macs: Dict[str, str] = Field(default_factory=dict, description="Guest device name to assigned MAC")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_instance_id() -> str:
    """Generate an identity for a new microvm incarnation."""
    return uuid.uuid4().hex


class MicrovmStatus(BaseModel):
    """Last observed status of one microvm incarnation.

    A new value is produced for every transition; instances are never
    mutated in place.
    """
    model_config = ConfigDict(frozen=True)

    instance_id: str = Field(default_factory=new_instance_id)
    state: VMState
    handle: Optional[InstanceHandle] = None
    spec_digest: Optional[str] = None
    pending_attempts: int = Field(default=0, ge=0)
    reason: Optional[str] = None
    error: Optional[str] = Field(None, description="Error class of the last failure")
    last_transition: datetime = Field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        """Serialise for the status snapshot."""
        return self.model_dump(mode="json")
