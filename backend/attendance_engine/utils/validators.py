"""Validation utilities for the engine."""
from typing import Any, Optional

from attendance_engine.utils.errors import ValidationError

class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_coordinates(latitude: Any, longitude: Any) -> None:
        """Validate a latitude/longitude pair in degrees."""
        for name, value, bound in (('latitude', latitude, 90.0), ('longitude', longitude, 180.0)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name.title()} must be a number")
            if value != value or not -bound <= value <= bound:
                raise ValidationError(f"{name.title()} must be between {-bound:g} and {bound:g}")

    @staticmethod
    def validate_radius(radius_meters: Any) -> None:
        """Zone radius must be a positive number of meters."""
        if isinstance(radius_meters, bool) or not isinstance(radius_meters, (int, float)):
            raise ValidationError("Radius must be a number")
        if not radius_meters > 0:
            raise ValidationError("Radius must be greater than 0")

    @staticmethod
    def validate_confidence(confidence_percent: Any) -> float:
        """Provider confidence is a percentage in 0..100."""
        if isinstance(confidence_percent, bool) or not isinstance(confidence_percent, (int, float)):
            raise ValidationError("Confidence must be a number")
        if not 0 <= confidence_percent <= 100:
            raise ValidationError("Confidence must be between 0 and 100")
        return float(confidence_percent)

    @staticmethod
    def is_blank(value: Optional[str]) -> bool:
        """True for None, empty or whitespace-only strings."""
        return value is None or not str(value).strip()

    @staticmethod
    def validate_required_text(value: Optional[str], field: str, max_length: int = 255) -> str:
        """Validate a required free-text field and return it stripped."""
        if Validator.is_blank(value):
            raise ValidationError(f"{field.title()} is required")
        value = str(value).strip()
        if len(value) > max_length:
            raise ValidationError(f"{field.title()} is too long")
        return value
