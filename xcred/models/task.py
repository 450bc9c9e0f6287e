"""Consensus validation models."""

import json

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ValidationTask(BaseModel):
    """Signed request from the authority asking selected nodes to re-fetch a profile."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str
    username: str
    timestamp: int = Field(description="Issue time, epoch milliseconds")
    selected_validators: list[str] = []
    signature: str
    authority_public_key: str | None = None

    def signing_payload(self) -> bytes:
        """Compact JSON of the signed fields, in the authority's key order."""
        payload = {
            "taskId": self.task_id,
            "username": self.username,
            "timestamp": self.timestamp,
            "selectedValidators": self.selected_validators,
            "authorityPublicKey": self.authority_public_key,
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class ValidatorBudget(BaseModel):
    """Per-window allowance of validation tasks this node will service."""

    remaining: int
    capacity: int
    window_start: float


class BudgetInfo(BaseModel):
    """Budget view for callers."""

    remaining: int
    capacity: int
    seconds_until_reset: float
