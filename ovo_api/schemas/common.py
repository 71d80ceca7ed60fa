"""Shared response envelopes and the camelCase base model."""

from __future__ import annotations

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataResponse(CamelModel, Generic[DataT]):
    """Success envelope carrying a payload."""

    success: Literal[True] = True
    data: DataT


class MessageResponse(CamelModel):
    """Success envelope carrying a message."""

    success: Literal[True] = True
    message: str


class ErrorResponse(CamelModel):
    """Failure envelope."""

    success: Literal[False] = False
    message: str
    code: str
    errors: dict[str, list[str]] | None = None
