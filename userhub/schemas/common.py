"""Shared pydantic bases and the uniform response envelope."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, SerializerFunctionWrapHandler, model_serializer
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")


class CamelModel(BaseModel):
    """Outbound model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(BaseModel):
    """Inbound model: unknown fields are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class FieldError(BaseModel):
    field: str
    message: str


class Envelope(BaseModel, Generic[DataT]):
    success: bool = True
    message: str | None = None
    data: DataT | None = None
    errors: list[FieldError] | None = None

    @model_serializer(mode="wrap")
    def _drop_empty(self, handler: SerializerFunctionWrapHandler):
        # message, data and errors are only sent when set
        return {key: value for key, value in handler(self).items() if value is not None}
