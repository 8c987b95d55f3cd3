"""Column definitions for mapper schemas."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any

from recordkit.errors import ValidationError

# Types accepted for a declared python_type besides exact instances
_WIDENING: dict[type, tuple[type, ...]] = {
    float: (int,),
    datetime: (),
    date: (datetime,),
    time: (),
}


@dataclass
class ColumnInfo:
    """Stores metadata and value rules for a mapped column."""

    name: str | None = None
    python_type: type | None = None
    primary_key: bool = False
    nullable: bool = True
    default: Any = None
    max_length: int | None = None
    coerce: Callable[[Any], Any] | None = None
    validator: Callable[[Any], bool] | None = None

    def get_default(self) -> Any:
        """Return the default value, calling it if it is a factory."""
        return self.default() if callable(self.default) else self.default

    def clean(self, value: Any) -> Any:
        """Coerce and validate a value, returning the value to store.

        Raises:
            ValidationError: If the value does not satisfy the column rules.
        """
        field = self.name or "?"

        if self.coerce is not None:
            try:
                value = self.coerce(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(field, value, f"Cannot coerce {value!r} for '{field}': {e}") from e

        if value is None:
            if not self.nullable:
                raise ValidationError(field, value, f"Attribute '{field}' is required")
            return value

        if self.python_type is not None and not self._type_matches(value):
            raise ValidationError(
                field,
                value,
                f"Attribute '{field}' expects {self.python_type.__name__}, got {type(value).__name__}",
            )

        if self.max_length is not None and isinstance(value, str) and len(value) > self.max_length:
            raise ValidationError(field, value, f"Attribute '{field}' exceeds {self.max_length} characters")

        if self.validator is not None and not self.validator(value):
            raise ValidationError(field, value)

        return value

    def _type_matches(self, value: Any) -> bool:
        expected = self.python_type
        assert expected is not None
        # bool is an int subclass, but never a valid int/float column value
        if isinstance(value, bool) and expected is not bool:
            return False
        if isinstance(value, expected):
            return True
        return isinstance(value, _WIDENING.get(expected, ()))


def mapped_column(
    python_type: type | None = None,
    /,
    *,
    primary_key: bool = False,
    nullable: bool = True,
    default: Any = None,
    max_length: int | None = None,
    coerce: Callable[[Any], Any] | None = None,
    validator: Callable[[Any], bool] | None = None,
) -> Any:
    """Define a mapped column.

    Args:
        python_type: Expected Python type of the value (None accepts anything)
        primary_key: Whether this is the primary key column
        nullable: Whether None is accepted
        default: Default value for new records (can be callable)
        max_length: Maximum length for string values
        coerce: Callable applied to incoming values before validation
        validator: Predicate that must hold for the value to be accepted

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id = mapped_column(int, primary_key=True)
        >>> name = mapped_column(str, max_length=100, nullable=False)
        >>> age = mapped_column(int, coerce=int, validator=lambda v: v >= 0)
    """
    # Primary keys stay nullable so new records can be saved without one
    return ColumnInfo(
        python_type=python_type,
        primary_key=primary_key,
        nullable=nullable or primary_key,
        default=default,
        max_length=max_length,
        coerce=coerce,
        validator=validator,
    )
