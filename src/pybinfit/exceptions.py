"""
Exception classes for pybinfit.

Custom exception hierarchy for configuration, pipeline and dial errors.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from pydantic import (
    ValidationError,
    ValidationInfo,
    WrapValidator,
)
from pydantic_core import ErrorDetails, InitErrorDetails, PydanticCustomError


class PyBinFitException(Exception):
    """
    Base exception class for all pybinfit-related errors.

    This serves as the root exception that all other pybinfit exceptions inherit from,
    allowing users to catch all pybinfit-specific errors with a single except clause.
    """


class ConfigurationError(PyBinFitException):
    """
    Raised when the fit configuration is inconsistent.

    These are fatal: the fit cannot proceed until the configuration is fixed.
    """


class DialConfigurationError(ConfigurationError):
    """
    Raised when a dial is used without a valid type or parameter handle.
    """


class UnknownStatisticError(ConfigurationError):
    """
    Raised when a comparison statistic name is not registered.
    """


class DuplicateNameError(ConfigurationError):
    """
    Raised when two datasets, samples or jobs share the same name.
    """


class VariableNotFoundError(ConfigurationError, KeyError):
    """
    Raised when an event is asked for a variable it does not carry.

    This typically means the variables requested by bins or dials do not
    match the variable list declared by the dataset.
    """

    def __str__(self) -> str:
        # KeyError quotes its argument, keep the message readable
        return str(self.args[0]) if self.args else ""


class DoubleInitializationError(PyBinFitException):
    """
    Raised when a one-time initialization step is invoked twice.
    """


class ResponseComputationError(PyBinFitException):
    """
    Raised when a dial response computation does not produce a finite number.
    """


class PipelineError(PyBinFitException):
    """
    Base class for errors raised while running the histogram pipeline.
    """


class PipelineOrderError(PipelineError):
    """
    Raised when a pipeline stage runs before the stage it depends on.
    """


class BinIndexError(PipelineError, IndexError):
    """
    Raised when an event carries a bin index outside its sample's binning.
    """


class JobRegistrationError(PipelineError):
    """
    Raised when a parallel job is registered twice or looked up but unknown.
    """


class JobExecutionError(PipelineError):
    """
    Raised when a parallel job fails in one of its worker threads.
    """


def format_validation_error(validation_error: ValidationError, source: str) -> str:
    """
    Format a ValidationError into a readable error summary.

    Args:
        validation_error: The ValidationError to format
        source: Human-readable name of what was being validated

    Returns:
        Formatted error message string
    """
    errors = validation_error.errors()
    error_types: Counter[str] = Counter(error["type"] for error in errors)

    summary = f"{source} validation failed with {len(errors)} errors\n"
    summary += "\nError breakdown by type:\n"
    for error_type, count in error_types.most_common():
        summary += f"  {error_type}: {count}\n"

    summary += "\nErrors:\n"
    for i, error in enumerate(errors):
        loc_parts: list[str] = []
        for part in error.get("loc", []):
            if isinstance(part, int):
                loc_parts.append(f"[{part}]")
            elif loc_parts:
                loc_parts.append(f" -> {part}")
            else:
                loc_parts.append(str(part))
        readable_loc = "".join(loc_parts) or "<root>"
        summary += f"  {i + 1}. {readable_loc}: {error.get('msg', 'Unknown error')}\n"
    return summary


def custom_error_msg(custom_messages: dict[str, str]) -> Any:
    r"""
    Replace pydantic error messages by error type.

    Messages are ``str.format`` templates receiving the error context, the
    rejected ``input`` and the fields validated so far.
    See https://github.com/pydantic/pydantic/discussions/8468.

    Example:

    >>> from typing import Annotated, Literal
    >>> from pydantic import BaseModel
    >>> ErrorModelName = Annotated[
    ...     Literal["sumw2", "poisson"],
    ...     custom_error_msg({"literal_error": "Unknown error model '{input}', expected {expected}."}),
    ... ]
    >>> class Histogram(BaseModel):
    ...     error_model: ErrorModelName
    >>> Histogram(error_model="gauss")  # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    pydantic_core._pydantic_core.ValidationError: 1 validation error for Histogram
    error_model
      Unknown error model 'gauss', expected 'sumw2' or 'poisson'. ...
    """

    def _rewrite(error: ErrorDetails, info: ValidationInfo) -> InitErrorDetails | ErrorDetails:
        template = custom_messages.get(error["type"])
        if not template:
            return error
        context = {**error.get("ctx", {}), "input": error["input"], **(info.data or {})}
        return InitErrorDetails(
            type=PydanticCustomError(error["type"], template, context),
            loc=error["loc"],
            input=error["input"],
        )

    def _validator(value: Any, handler: Any, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError as exc:
            raise ValidationError.from_exception_data(
                title=exc.title,
                line_errors=[_rewrite(error, info) for error in exc.errors()],  # type: ignore[arg-type]
            ) from None

    return WrapValidator(_validator)
