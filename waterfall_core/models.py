from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class Segment:
    """One signed contribution inside an Entry."""

    value: float
    color: str
    label: Optional[str] = None
    percentage: Optional[float] = None
    original_value: Optional[float] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Segment":
        original = raw.get("original_value", raw.get("originalValue"))
        return cls(
            value=float(raw["value"]),
            color=str(raw["color"]),
            label=raw.get("label"),
            percentage=raw.get("percentage"),
            original_value=None if original is None else float(original),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"value": self.value, "color": self.color}
        if self.label is not None:
            out["label"] = self.label
        if self.percentage is not None:
            out["percentage"] = self.percentage
        if self.original_value is not None:
            out["originalValue"] = self.original_value
        return out


@dataclass(frozen=True)
class Entry:
    """
    One category row of a waterfall dataset.

    `original_stacks` holds the pre-transform segments when an operator keeps a
    snapshot (aggregate_data does).
    """

    label: str
    stacks: Tuple[Segment, ...]
    aggregated_value: Optional[float] = None
    original_stacks: Optional[Tuple[Segment, ...]] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Entry":
        original = raw.get("original_stacks", raw.get("originalStacks"))
        aggregated = raw.get("aggregated_value", raw.get("aggregatedValue"))
        return cls(
            label=str(raw["label"]),
            stacks=tuple(_as_segment(s) for s in raw["stacks"]),
            aggregated_value=None if aggregated is None else float(aggregated),
            original_stacks=None
            if original is None
            else tuple(_as_segment(s) for s in original),
        )

    @property
    def total(self) -> float:
        return sum(s.value for s in self.stacks)

    @property
    def max_stack(self) -> float:
        return max(s.value for s in self.stacks)

    @property
    def min_stack(self) -> float:
        return min(s.value for s in self.stacks)

    @property
    def stack_count(self) -> int:
        return len(self.stacks)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "label": self.label,
            "stacks": [s.to_dict() for s in self.stacks],
        }
        if self.aggregated_value is not None:
            out["aggregatedValue"] = self.aggregated_value
        if self.original_stacks is not None:
            out["originalStacks"] = [s.to_dict() for s in self.original_stacks]
        return out


def _as_segment(raw: Any) -> Segment:
    if isinstance(raw, Segment):
        return raw
    return Segment.from_mapping(raw)


def as_entry(raw: Any) -> Entry:
    """Return `raw` as an Entry; mappings are converted, Entries pass through."""
    if isinstance(raw, Entry):
        return raw
    return Entry.from_mapping(raw)


@dataclass(frozen=True)
class SelectionSummary:
    count: int = 0
    sum: float = 0.0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0
    # None when nothing is selected
    extent: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class DataSummary:
    total_items: int
    total_stacks: int
    value_range: Tuple[float, float]
    cumulative_total: float
    stack_colors: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
