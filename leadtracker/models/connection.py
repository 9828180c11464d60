from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


class ConnectionStatus(BaseModel):
    """Snapshot of the WhatsApp session as seen by the HTTP layer."""
    model_config = ConfigDict(populate_by_name=True)

    ready: bool = False
    qr_code: str | None = Field(default=None, alias="qrCode")
    connecting: bool = False
    last_error: str | None = Field(default=None, alias="lastError")
    state: ConnectionState = ConnectionState.UNINITIALIZED

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
