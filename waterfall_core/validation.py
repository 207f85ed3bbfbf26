"""
Dataset Validator
Structural and type checks for the canonical Entry/Segment model, plus the
exception hierarchy shared by every operator in the package.
"""

import math
from numbers import Real
from typing import Any, Mapping, Optional, Sequence


class WaterfallError(Exception):
    """Base exception for waterfall data processing errors."""

    pass


class ValidationError(WaterfallError, ValueError):
    """
    Raised when a dataset does not match the canonical shape.

    Attributes:
        entry_index: Index of the offending Entry, or None for dataset-level rules
        segment_index: Index of the offending Segment, or None
        rule: Short identifier of the violated rule (e.g. "stacks_empty")
    """

    def __init__(
        self,
        message: str,
        entry_index: Optional[int] = None,
        segment_index: Optional[int] = None,
        rule: str = "",
    ) -> None:
        super().__init__(message)
        self.entry_index = entry_index
        self.segment_index = segment_index
        self.rule = rule


class TypeMismatch(WaterfallError, TypeError):
    """Raised when a callback or collection argument has the wrong type."""

    pass


class ShapeMismatch(WaterfallError, ValueError):
    """Raised when datasets or entries have incompatible lengths."""

    pass


class ConfigurationError(WaterfallError, ValueError):
    """Raised when a scale lacks both band and inverse-mapping capabilities."""

    pass


_MISSING = object()


def _field(obj: Any, name: str) -> Any:
    # Entries and segments may be dataclass instances or plain mappings
    if isinstance(obj, Mapping):
        return obj.get(name, _MISSING)
    return getattr(obj, name, _MISSING)


def _is_record(obj: Any) -> bool:
    if isinstance(obj, Mapping):
        return True
    return hasattr(obj, "__dataclass_fields__")


def _is_sequence(obj: Any) -> bool:
    return isinstance(obj, Sequence) and not isinstance(obj, (str, bytes, bytearray))


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(float(value))


def validate_entry(entry: Any, index: int) -> bool:
    """
    Validate a single Entry (dataclass or mapping).

    Args:
        entry: Entry-like object to check
        index: Position of the entry in its dataset, used in error messages

    Returns:
        bool: True when the entry is well-formed

    Raises:
        ValidationError: On the first rule violation found
    """
    if not _is_record(entry):
        raise ValidationError(
            f"Item at index {index} must be an object",
            entry_index=index,
            rule="entry_not_object",
        )

    label = _field(entry, "label")
    if not isinstance(label, str):
        raise ValidationError(
            f"Item at index {index} must have a string 'label' property",
            entry_index=index,
            rule="label_not_string",
        )
    if not label:
        raise ValidationError(
            f"Item at index {index} must have a non-empty 'label'",
            entry_index=index,
            rule="label_empty",
        )

    stacks = _field(entry, "stacks")
    if not isinstance(stacks, (list, tuple)):
        raise ValidationError(
            f"Item at index {index} must have an array 'stacks' property",
            entry_index=index,
            rule="stacks_not_sequence",
        )
    if len(stacks) == 0:
        raise ValidationError(
            f"Item at index {index} must have at least one stack",
            entry_index=index,
            rule="stacks_empty",
        )

    for seg_index, segment in enumerate(stacks):
        if not _is_record(segment):
            raise ValidationError(
                f"Stack {seg_index} in item {index} must be an object",
                entry_index=index,
                segment_index=seg_index,
                rule="segment_not_object",
            )
        if not _is_finite_number(_field(segment, "value")):
            raise ValidationError(
                f"Stack {seg_index} in item {index} must have a finite numeric 'value'",
                entry_index=index,
                segment_index=seg_index,
                rule="value_not_finite",
            )
        color = _field(segment, "color")
        if not isinstance(color, str):
            raise ValidationError(
                f"Stack {seg_index} in item {index} must have a string 'color'",
                entry_index=index,
                segment_index=seg_index,
                rule="color_not_string",
            )
        if not color:
            raise ValidationError(
                f"Stack {seg_index} in item {index} must have a non-empty 'color'",
                entry_index=index,
                segment_index=seg_index,
                rule="color_empty",
            )

    return True


def validate(dataset: Any) -> bool:
    """
    Validate a whole dataset. Fails fast on the first violation; there is no
    collected-errors mode.

    Returns:
        bool: True when every entry is well-formed

    Raises:
        ValidationError: When the dataset or any entry breaks a rule
    """
    if not _is_sequence(dataset) or _is_record(dataset):
        raise ValidationError("Data must be an array", rule="not_a_sequence")
    if len(dataset) == 0:
        raise ValidationError("Data array cannot be empty", rule="empty_dataset")

    for index, entry in enumerate(dataset):
        validate_entry(entry, index)
    return True
