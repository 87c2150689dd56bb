"""Pydantic schema for the JSON payload embedded in Verum transactions."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from verumindex.protocol.constants import TransactionType


class ProtocolPayload(BaseModel):
    """Versioned protocol payload. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    verum: str = Field(..., description="Protocol version string")
    type: TransactionType
    content: str | None = None
    timestamp: float | None = Field(None, description="Client-side creation time in seconds")
    parent_id: str | None = Field(None, description="Referenced transaction for comments, likes and story segments")
    prev_tx_id: str | None = Field(None, description="Previous Verum transaction by the same author")
    last_subscribe: str | None = None
    start_tx_id: str | None = None
    params: dict[str, Any] | None = None


class ProfileContent(BaseModel):
    """JSON carried in the content field of a START transaction."""

    model_config = ConfigDict(extra="ignore")

    nickname: str | None = None
    avatar: str | None = None
