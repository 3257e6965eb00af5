"""
Input validation and sanitization utilities.
Validates request payloads at the ingestion boundary; malformed input is
rejected, never silently coerced.
"""

from typing import Any, List, Optional
import math

from pydantic import ValidationError as PydanticValidationError

from domain.models import ParticipationConfig, Segment
from shared_utils.error_handler import ValidationError
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.constants import LogScope


logger = get_scoped_logger(LogScope.VALIDATION)


class InputValidator:
    """Utility class for input validation."""

    @staticmethod
    def validate_non_empty_string(value: str, field_name: str) -> str:
        """Validate non-empty string.

        Args:
            value: String to validate
            field_name: Name of field for error messages

        Returns:
            Validated, stripped string

        Raises:
            ValidationError: If validation fails
        """
        if not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a string")

        if not value or not value.strip():
            raise ValidationError(f"{field_name} cannot be empty")

        return value.strip()

    @staticmethod
    def validate_non_negative_int(value: Any, field_name: str) -> int:
        """Validate an integer >= 0 (booleans are rejected).

        Raises:
            ValidationError: If validation fails
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field_name} must be an integer")
        if value < 0:
            raise ValidationError(f"{field_name} must be >= 0")
        return value

    @staticmethod
    def validate_duration(value: Any, field_name: str = "duration") -> float:
        """Validate a finite, non-negative number of seconds."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{field_name} must be a number")
        if not math.isfinite(value) or value < 0:
            raise ValidationError(f"{field_name} must be a finite number >= 0")
        return float(value)

    @staticmethod
    def validate_keywords(value: Any, field_name: str = "topicKeywords") -> Optional[List[str]]:
        """Validate an optional list of non-empty keyword strings (lowercased)."""
        if value is None:
            return None
        if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
            raise ValidationError(f"{field_name} must be a list of strings")
        keywords = [k.strip().lower() for k in value if k.strip()]
        return keywords or None

    @staticmethod
    def parse_participation_config(value: Any) -> Optional[ParticipationConfig]:
        """Parse optional ``participationConfig`` (fractions in [0, 1])."""
        if value is None:
            return None
        try:
            return ParticipationConfig.model_validate(value)
        except PydanticValidationError as exc:
            raise ValidationError(
                "participationConfig is invalid",
                context={"errors": _summarise(exc)},
            ) from exc

    @staticmethod
    def parse_segments(value: Any) -> List[Segment]:
        """Parse a non-empty list of segment payloads.

        Raises:
            ValidationError: If the list is empty or any segment is malformed.
        """
        if not isinstance(value, list) or not value:
            raise ValidationError("segments must be a non-empty array")

        segments: List[Segment] = []
        for index, raw in enumerate(value):
            try:
                segments.append(Segment.model_validate(raw))
            except PydanticValidationError as exc:
                logger.warning("segment_rejected", index=index, errors=_summarise(exc))
                raise ValidationError(
                    f"segment {index} is invalid",
                    context={"index": index, "errors": _summarise(exc)},
                ) from exc
        return segments


def _summarise(exc: PydanticValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or 'segment'}: {err['msg']}"
        for err in exc.errors()
    ]
