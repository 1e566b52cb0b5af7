"""Boundary validation for inbound payloads.

Runs in the route before the service is called. Pure: no I/O, no state,
so a rejected payload leaves no trace in attempt tracking or token stores.
The service itself only ever sees parsed schema instances.
"""

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from auth.exceptions import FieldError, PayloadValidationError

T = TypeVar("T", bound=BaseModel)


def _field_path(loc: tuple) -> str:
    path = ".".join(str(part) for part in loc)
    return path or "body"


class RequestValidator:
    """Parses raw payloads against pydantic schemas."""

    def validate(self, schema: type[T], payload: Any) -> T:
        """Return the parsed payload.

        Raises:
            PayloadValidationError: one FieldError per failed check.
        """
        if not isinstance(payload, dict):
            raise PayloadValidationError([FieldError("body", "Expected a JSON object")])
        try:
            return schema.model_validate(payload)
        except ValidationError as e:
            raise PayloadValidationError([
                FieldError(_field_path(error["loc"]), error["msg"])
                for error in e.errors(include_url=False)
            ]) from None
