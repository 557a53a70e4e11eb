"""Payload decoders.

Channels receive raw bytes from the broker and turn them into the typed
payload predicates are evaluated against. The default is UTF-8 text;
``ModelDecoder`` validates JSON into a pydantic model so predicates can work
on typed fields.

Example - Typed payloads:
    >>> class OrderShipped(BaseModel):
    ...     order_id: str
    ...     carrier: str
    >>>
    >>> channel = KafkaChannel(config, decoder=ModelDecoder(OrderShipped))
    >>> output.check_for(lambda order: order.carrier == "UPS")
"""

from __future__ import annotations

import json
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from outputmatcher.exceptions import PayloadDecodeError

TModel = TypeVar("TModel", bound=BaseModel)


class PayloadDecoder:
    """Base class for payload decoders. The default returns bytes unchanged."""

    def decode(self, data: bytes) -> Any:
        """
        Decode raw message bytes.

        Args:
            data: Message body as received from the broker

        Returns:
            The decoded payload

        Raises:
            PayloadDecodeError: If the bytes cannot be decoded
        """
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RawDecoder(PayloadDecoder):
    """Leaves payloads as bytes."""

    pass


class TextDecoder(PayloadDecoder):
    """Decodes payloads as text."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    def decode(self, data: bytes) -> str:
        try:
            return data.decode(self._encoding)
        except UnicodeDecodeError as e:
            raise PayloadDecodeError(repr(self), str(e)) from e

    def __repr__(self) -> str:
        return f"TextDecoder({self._encoding!r})"


class JsonDecoder(PayloadDecoder):
    """Decodes payloads as JSON documents."""

    def decode(self, data: bytes) -> Any:
        try:
            return json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PayloadDecodeError(repr(self), str(e)) from e


class ModelDecoder(PayloadDecoder, Generic[TModel]):
    """Validates JSON payloads into a pydantic model."""

    def __init__(self, model: type[TModel]) -> None:
        self._model = model

    @property
    def model(self) -> type[TModel]:
        return self._model

    def decode(self, data: bytes) -> TModel:
        try:
            return self._model.model_validate_json(data)
        except ValidationError as e:
            raise PayloadDecodeError(repr(self), str(e)) from e

    def __repr__(self) -> str:
        return f"ModelDecoder({self._model.__name__})"


__all__ = [
    "PayloadDecoder",
    "RawDecoder",
    "TextDecoder",
    "JsonDecoder",
    "ModelDecoder",
]
