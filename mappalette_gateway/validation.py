"""
Request payload validation.

validate_payload() runs a payload through a schema and returns a tagged
result. validate() wraps it as a FastAPI dependency that short-circuits the
route with a 400 listing every violated field, or a generic 500 when
validation itself fails unexpectedly.
"""
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Type, Union

from fastapi import Request
from pydantic import BaseModel, ValidationError

from mappalette_gateway.errors import PayloadValidationError, ValidationInternalError
from mappalette_gateway.metrics import record_validation_failure

logger = logging.getLogger(__name__)

SOURCES = ("body", "query", "params")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationSuccess:
    value: Dict[str, Any]
    ok: bool = True


@dataclass(frozen=True)
class ValidationFailure:
    errors: List[FieldError]
    ok: bool = False


ValidationResult = Union[ValidationSuccess, ValidationFailure]


def normalize(model: BaseModel) -> Dict[str, Any]:
    """
    Dump a validated model back to wire form.

    Keeps the fields the caller sent plus any non-null schema defaults, so
    optional fields the caller left out are not injected as nulls.
    """
    supplied = model.model_dump(mode="json", by_alias=True, exclude_unset=True)
    defaults = model.model_dump(
        mode="json",
        by_alias=True,
        exclude=set(model.model_fields_set),
        exclude_none=True,
    )
    return {**defaults, **supplied}


def _field_path(loc) -> str:
    return ".".join(str(part) for part in loc)


def validate_payload(schema: Type[BaseModel], data: Any) -> ValidationResult:
    """Validate data against schema, collecting every violation."""
    try:
        model = schema.model_validate(data)
    except ValidationError as e:
        return ValidationFailure(
            errors=[
                FieldError(field=_field_path(err["loc"]), message=err["msg"])
                for err in e.errors()
            ]
        )
    return ValidationSuccess(value=normalize(model))


async def _read_source(request: Request, source: str) -> Any:
    if source == "body":
        if not await request.body():
            return {}
        return await request.json()
    if source == "query":
        return dict(request.query_params)
    return dict(request.path_params)


def validate(schema: Type[BaseModel], source: str = "body") -> Callable:
    """
    Build a dependency validating one portion of the request.

    The normalized payload replaces the raw one in
    request.state.validated[source] and is returned to the route.
    """
    if source not in SOURCES:
        raise ValueError(f"Unknown validation source: {source}")

    async def dependency(request: Request) -> Dict[str, Any]:
        try:
            data = await _read_source(request, source)
            result = validate_payload(schema, data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            result = ValidationFailure(errors=[FieldError(field=source, message="Invalid JSON")])
        except Exception as e:
            logger.exception(f"Unexpected error validating {source} against {schema.__name__}: {e}")
            raise ValidationInternalError("Validation failed") from e

        if not result.ok:
            record_validation_failure(source)
            raise PayloadValidationError([err.to_dict() for err in result.errors], source=source)

        validated = getattr(request.state, "validated", None)
        if validated is None:
            validated = request.state.validated = {}
        validated[source] = result.value
        return result.value

    dependency.__name__ = f"validate_{source}_{schema.__name__}"
    return dependency
