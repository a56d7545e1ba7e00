"""Inbound message models of the real-time console channel."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class InboundFrame(BaseModel):
    """A client frame: ``{"event": name, "data": {...}}``."""

    event: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ConsoleConnectData(_CamelModel):
    """Data of ``console:connect``."""

    container_id: str = Field(..., alias="containerId", min_length=1)


class ConsoleCommandData(_CamelModel):
    """Data of ``console:command``."""

    command: str


class ConsoleInputData(_CamelModel):
    """Data of ``console:input``."""

    input: str


class ConsoleResizeData(_CamelModel):
    """Data of ``console:resize``."""

    cols: int = Field(..., gt=0, le=1000)
    rows: int = Field(..., gt=0, le=1000)


class StatsSubscribeData(_CamelModel):
    """Data of ``stats:subscribe``."""

    container_id: str = Field(..., alias="containerId", min_length=1)
    interval: Optional[int] = Field(None, description="Polling interval in milliseconds")


class EmptyData(_CamelModel):
    """Data of events without arguments."""
