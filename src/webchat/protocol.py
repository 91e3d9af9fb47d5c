"""Pydantic models for the chat service wire format.

These models define the JSON shapes returned by:
- POST {endpoint}/init
- GET {endpoint}/info/{id}

Unknown fields are ignored so a newer backend does not break older clients.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ProtocolDriftError
from .models import SessionOffsets


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WireOffsets(WireModel):
    """Offsets as reported by the info endpoint."""

    history: int = Field(ge=0)
    text: int = Field(default=0, ge=0)

    def to_offsets(self) -> SessionOffsets:
        return SessionOffsets(history=self.history, text=self.text)


class HistoryEntry(WireModel):
    """One entry of the remote conversation history."""

    role: str = ""
    text: Optional[str] = None
    date_time: Optional[str] = Field(default=None, alias="dateTime")
    is_tool_call: bool = Field(default=False, alias="isToolCall")

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class InfoResponse(WireModel):
    """Response from the info endpoint."""

    id: Optional[str] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    offsets: Optional[WireOffsets] = None
    running: bool = False


class InitResponse(WireModel):
    """Response from the init endpoint."""

    id: Optional[str] = None


def parse_info(payload: Any) -> InfoResponse:
    """Validate an info payload.

    An empty or non-JSON body (``None``) and a body without a ``history``
    field are drift, not an empty transcript. Only an explicit
    ``"history": null`` means no entries.

    Raises:
        ProtocolDriftError: If the payload does not match the expected shape
    """
    if payload is None or payload == "":
        raise ProtocolDriftError("Info response has no JSON body")
    if not isinstance(payload, dict):
        raise ProtocolDriftError(f"Unexpected info payload type: {type(payload).__name__}")
    if "history" not in payload:
        raise ProtocolDriftError("Info response is missing the history field", payload=payload)
    # Some backends send explicit nulls for empty collections
    if payload["history"] is None:
        payload = {**payload, "history": []}
    if payload.get("running") is None:
        payload = {**payload, "running": False}
    try:
        return InfoResponse.model_validate(payload)
    except ValidationError as e:
        raise ProtocolDriftError(f"Malformed info response: {e}", payload=payload) from e


def parse_init(payload: Any) -> InitResponse:
    """Validate an init payload.

    Raises:
        ProtocolDriftError: If the payload does not match the expected shape
    """
    if not isinstance(payload, dict):
        raise ProtocolDriftError(f"Unexpected init payload type: {type(payload).__name__}")
    try:
        return InitResponse.model_validate(payload)
    except ValidationError as e:
        raise ProtocolDriftError(f"Malformed init response: {e}", payload=payload) from e
