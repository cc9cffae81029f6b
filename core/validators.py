"""
Shared validation helpers for GraphMem services.
"""

from __future__ import annotations

from typing import Optional, Sequence

from core.errors import ValidationIssue


def validate_required_text(value: str, field: str, max_len: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")
    return value.strip()


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")
    return value


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_id_list(values: Optional[Sequence], field: str) -> list[int]:
    if values is None:
        return []
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValidationIssue(f"{field} must be a list", field=field, error_type="invalid_type")
    ids = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationIssue(
                f"{field} must contain integer IDs",
                field=field,
                error_type="invalid_type",
            )
        ids.append(value)
    return ids
