"""Message contracts exchanged between the service and workers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, Field

from .models import new_id, utcnow


class ExecutionRequest(BaseModel):
    """Asks a worker to run an already-created execution record."""

    message_id: str = Field(default_factory=new_id)
    execution_id: str
    flow_id: str
    tenant_id: str
    created_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionRequest":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
