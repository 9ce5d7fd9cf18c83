# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request parsing helpers using Pydantic models.

Failures raise ``ValidationException`` so the error handler renders one
problem response shape for every route.
"""

from flask import request
from typing import Type, TypeVar, Dict, Any
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

from middleware.error_handler import ValidationException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)


def parse_json_body(model_class: Type[ModelT]) -> ModelT:
    """
    Validate the JSON request body against a Pydantic model.

    Args:
        model_class: Pydantic model class for validation

    Returns:
        Validated model instance

    Raises:
        ValidationException: Missing/invalid JSON or failed validation
    """
    with tracer.start_as_current_span("validation.parse_json_body") as span:
        span.set_attribute("validation.model", model_class.__name__)

        json_data = request.get_json(silent=True)
        if not isinstance(json_data, dict):
            span.set_attribute("validation.result", "invalid_json")
            raise ValidationException(
                "Request body must be a JSON object",
                [{"field": "body", "message": "Expected a JSON object", "type": "json_error"}]
            )

        try:
            validated = model_class(**json_data)
        except ValidationError as e:
            span.set_attribute("validation.result", "validation_error")
            logger.warning(
                "Request validation failed",
                extra={"model": model_class.__name__, "path": request.path, "method": request.method}
            )
            raise ValidationException.from_pydantic(e, f"Request validation failed for {model_class.__name__}")

        span.set_attribute("validation.result", "success")
        return validated


def parse_query_args(model_class: Type[ModelT]) -> ModelT:
    """
    Validate query parameters against a Pydantic model.

    Raises:
        ValidationException: Failed validation
    """
    query_data: Dict[str, Any] = request.args.to_dict()
    try:
        return model_class(**query_data)
    except ValidationError as e:
        logger.warning(
            "Query parameter validation failed",
            extra={"model": model_class.__name__, "path": request.path, "params": query_data}
        )
        raise ValidationException.from_pydantic(e, f"Query parameter validation failed for {model_class.__name__}")
