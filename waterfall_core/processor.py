"""
Waterfall Data Processor - pure dataset operators.

Every operator validates its input, never mutates it, and returns a new list of
Entry objects (or a derived structure). Entries and segments are copied with
dataclasses.replace so only the affected fields change.

The DataProcessor class bundles the operators for hosts that prefer passing a
single object around; build one with create_data_processor().
"""

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .models import DataSummary, Entry, Segment, as_entry
from .validation import ShapeMismatch, TypeMismatch, validate

logger = logging.getLogger(__name__)

SAMPLE_COLORS = [
    "#1f77b4",
    "#ff7f0e",
    "#2ca02c",
    "#d62728",
    "#9467bd",
    "#8c564b",
    "#e377c2",
    "#7f7f7f",
    "#bcbd22",
    "#17becf",
]
BREAKDOWN_COLORS = ["#3498db", "#2ecc71", "#f39c12", "#e74c3c", "#9b59b6", "#1abc9c", "#34495e"]
POSITIVE_COLOR = "#2ecc71"
NEGATIVE_COLOR = "#e74c3c"

# Probability that a generated sample segment is negated
SAMPLE_NEGATIVE_PROBABILITY = 0.2


class AggregateMode(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    MAX = "max"
    MIN = "min"


class SortKey(str, Enum):
    LABEL = "label"
    TOTAL = "total"
    MAX_STACK = "maxStack"
    MIN_STACK = "minStack"
    STACK_COUNT = "stackCount"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


# pandas offset aliases used by temporal_waterfall()
TIME_INTERVALS = {
    "day": "D",
    "week": "W",
    "month": "MS",
    "quarter": "QS",
    "year": "YS",
}

Dataset = List[Entry]


def _checked(dataset: Sequence[Any]) -> Dataset:
    validate(dataset)
    return [as_entry(e) for e in dataset]


def _require_callable(fn: Any, what: str) -> None:
    if not callable(fn):
        raise TypeMismatch(f"{what} must be a function, got {type(fn).__name__}")


def validate_data(dataset: Sequence[Any]) -> bool:
    return validate(dataset)


def aggregate_data(
    dataset: Sequence[Any], mode: Union[AggregateMode, str] = AggregateMode.SUM
) -> Dataset:
    """
    Attach one scalar per entry as `aggregated_value` (sum, average, max or min
    of its segment values) and keep the segments under `original_stacks`.
    """
    entries = _checked(dataset)
    mode = AggregateMode(mode)

    reducers: Dict[AggregateMode, Callable[[List[float]], float]] = {
        AggregateMode.SUM: lambda vals: float(sum(vals)),
        AggregateMode.AVERAGE: lambda vals: float(sum(vals)) / len(vals),
        AggregateMode.MAX: lambda vals: float(max(vals)),
        AggregateMode.MIN: lambda vals: float(min(vals)),
    }
    reduce = reducers[mode]
    return [
        replace(
            e,
            aggregated_value=reduce([s.value for s in e.stacks]),
            original_stacks=e.stacks,
        )
        for e in entries
    ]


def sort_data(
    dataset: Sequence[Any],
    key: Union[SortKey, str] = SortKey.LABEL,
    direction: Union[SortDirection, str] = SortDirection.ASCENDING,
) -> Dataset:
    """
    Reorder entries. Stable for equal keys in both directions.

    `total` compares the absolute value of each entry's sum, so large negative
    swings sort next to large positive ones.
    """
    entries = _checked(dataset)
    key = SortKey(key)
    direction = SortDirection(direction)

    key_fns: Dict[SortKey, Callable[[Entry], Any]] = {
        SortKey.LABEL: lambda e: e.label.lower(),
        SortKey.TOTAL: lambda e: abs(e.total),
        SortKey.MAX_STACK: lambda e: e.max_stack,
        SortKey.MIN_STACK: lambda e: e.min_stack,
        SortKey.STACK_COUNT: lambda e: e.stack_count,
    }
    # sorted() keeps equal elements in input order even with reverse=True
    return sorted(
        entries,
        key=key_fns[key],
        reverse=direction is SortDirection.DESCENDING,
    )


def filter_data(dataset: Sequence[Any], predicate: Callable[[Entry], bool]) -> Dataset:
    entries = _checked(dataset)
    _require_callable(predicate, "Filter predicate")
    return [e for e in entries if predicate(e)]


def transform_stacks(
    dataset: Sequence[Any], transform: Callable[[Segment], Segment]
) -> Dataset:
    """Apply `transform` to every segment. The result is not re-validated."""
    entries = _checked(dataset)
    _require_callable(transform, "Transformer")
    return [replace(e, stacks=tuple(transform(s) for s in e.stacks)) for e in entries]


def transform_entries(
    dataset: Sequence[Any], transform: Callable[[Entry], Entry]
) -> Dataset:
    entries = _checked(dataset)
    _require_callable(transform, "Transformer")
    return [transform(e) for e in entries]


def normalize_values(dataset: Sequence[Any], target_max: float = 100) -> Dataset:
    """
    Scale every segment so the largest absolute value across the whole dataset
    becomes `target_max`. Pre-scale values are kept in `original_value`.
    An all-zero dataset is returned unchanged.
    """
    entries = _checked(dataset)
    max_abs = max(abs(s.value) for e in entries for s in e.stacks)
    if max_abs == 0:
        logger.debug("normalize_values: max abs value is 0, dataset unchanged")
        return entries

    factor = target_max / max_abs
    return [
        replace(
            e,
            stacks=tuple(
                replace(s, original_value=s.value, value=s.value * factor)
                for s in e.stacks
            ),
        )
        for e in entries
    ]


def group_by_category(
    dataset: Sequence[Any], category_fn: Callable[[Entry], Hashable]
) -> Dict[Hashable, Dataset]:
    """Partition entries by `category_fn`, keeping original order inside each group."""
    entries = _checked(dataset)
    _require_callable(category_fn, "Category function")
    groups: Dict[Hashable, Dataset] = {}
    for e in entries:
        groups.setdefault(category_fn(e), []).append(e)
    return groups


def calculate_percentages(dataset: Sequence[Any]) -> Dataset:
    """Set each segment's share of its entry's absolute total, in percent."""
    entries = _checked(dataset)
    out: Dataset = []
    for e in entries:
        abs_total = sum(abs(s.value) for s in e.stacks)
        stacks = tuple(
            replace(
                s,
                percentage=0.0 if abs_total == 0 else abs(s.value) / abs_total * 100,
            )
            for s in e.stacks
        )
        out.append(replace(e, stacks=stacks))
    return out


def interpolate_data(
    dataset_a: Sequence[Any], dataset_b: Sequence[Any], t: float
) -> Dataset:
    """
    Linear interpolation between segment values per segment. `t` is not clamped.
    Labels and every non-value segment field come from `dataset_a`.

    Raises:
        ShapeMismatch: If the datasets differ in length or any entry pair
            differs in segment count
    """
    entries_a = _checked(dataset_a)
    entries_b = _checked(dataset_b)
    if len(entries_a) != len(entries_b):
        raise ShapeMismatch(
            f"Data arrays must have the same length ({len(entries_a)} != {len(entries_b)})"
        )

    out: Dataset = []
    for index, (a, b) in enumerate(zip(entries_a, entries_b)):
        if a.stack_count != b.stack_count:
            raise ShapeMismatch(
                f"Item at index {index} has {a.stack_count} stacks in the first "
                f"dataset and {b.stack_count} in the second"
            )
        # a + (b - a) * t, exact at both endpoints
        stacks = tuple(
            replace(sa, value=(1 - t) * sa.value + t * sb.value)
            for sa, sb in zip(a.stacks, b.stacks)
        )
        out.append(Entry(label=a.label, stacks=stacks))
    return out


def generate_sample_data(
    category_count: int,
    max_stacks_per_entry: int,
    value_range: Tuple[float, float] = (10, 100),
    random_state: Optional[Union[int, np.random.Generator]] = None,
) -> Dataset:
    """
    Produce synthetic entries for demos and tests.

    Each entry gets a uniform-random number of segments in
    [1, max_stacks_per_entry]; each value is uniform in `value_range` and
    negated with probability 0.2. Entries are labelled "Category N" and each
    segment carries its value rounded half up as its label.

    Args:
        random_state: Seed or numpy Generator; None draws fresh entropy
    """
    if category_count < 1:
        raise ValueError(f"category_count must be >= 1, got {category_count}")
    if max_stacks_per_entry < 1:
        raise ValueError(f"max_stacks_per_entry must be >= 1, got {max_stacks_per_entry}")

    rng = (
        random_state
        if isinstance(random_state, np.random.Generator)
        else np.random.default_rng(random_state)
    )
    low, high = float(value_range[0]), float(value_range[1])

    out: Dataset = []
    for i in range(category_count):
        n_stacks = int(rng.integers(1, max_stacks_per_entry + 1))
        stacks = []
        for j in range(n_stacks):
            value = float(rng.uniform(low, high))
            if rng.random() < SAMPLE_NEGATIVE_PROBABILITY:
                value = -value
            stacks.append(
                Segment(
                    value=value,
                    color=SAMPLE_COLORS[j % len(SAMPLE_COLORS)],
                    label=str(int(np.floor(value + 0.5))),
                )
            )
        out.append(Entry(label=f"Category {i + 1}", stacks=tuple(stacks)))
    return out


def describe_data(dataset: Sequence[Any]) -> DataSummary:
    entries = _checked(dataset)
    values = [s.value for e in entries for s in e.stacks]
    colors = [s.color for e in entries for s in e.stacks]
    return DataSummary(
        total_items=len(entries),
        total_stacks=len(values),
        value_range=(min(values), max(values)),
        cumulative_total=float(sum(values)),
        stack_colors=list(dict.fromkeys(colors)),
        labels=[e.label for e in entries],
    )


def cumulative_totals(dataset: Sequence[Any]) -> List[float]:
    """Running total of entry sums, i.e. the top of each waterfall bar."""
    entries = _checked(dataset)
    return [float(v) for v in np.cumsum([e.total for e in entries])]


# -------------------------
# Tabular helpers (pandas)
# -------------------------
def to_frame(dataset: Sequence[Any]) -> pd.DataFrame:
    """Flatten a dataset into one DataFrame row per segment."""
    entries = _checked(dataset)
    records = [
        {
            "entry_index": i,
            "label": e.label,
            "segment_index": j,
            "value": s.value,
            "color": s.color,
            "segment_label": s.label,
            "percentage": s.percentage,
            "original_value": s.original_value,
            "aggregated_value": e.aggregated_value,
        }
        for i, e in enumerate(entries)
        for j, s in enumerate(e.stacks)
    ]
    return pd.DataFrame.from_records(records)


def _records_frame(rows: Any, required: Sequence[str]) -> pd.DataFrame:
    df = rows.copy() if isinstance(rows, pd.DataFrame) else pd.DataFrame(list(rows))
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")
    return df


def breakdown_waterfall(
    rows: Any, primary_key: str, breakdown_key: str, value_key: str
) -> Dataset:
    """
    Sum `value_key` per (primary, breakdown) pair. One entry per primary value,
    one segment per breakdown value, both in first-seen order.
    """
    df = _records_frame(rows, [primary_key, breakdown_key, value_key])
    df[value_key] = pd.to_numeric(df[value_key], errors="coerce").fillna(0.0)
    totals = df.groupby([primary_key, breakdown_key], sort=False)[value_key].sum()

    out: Dataset = []
    for primary, sub in totals.groupby(level=0, sort=False):
        stacks = tuple(
            Segment(
                value=float(value),
                color=BREAKDOWN_COLORS[k % len(BREAKDOWN_COLORS)],
                label=f"{breakdown}: {'+' if value >= 0 else ''}{value:.2f}",
            )
            for k, ((_, breakdown), value) in enumerate(sub.items())
        )
        out.append(Entry(label=str(primary), stacks=stacks))
    return out


def temporal_waterfall(
    rows: Any,
    time_key: str,
    value_key: str,
    interval: str = "month",
    aggregation: Union[AggregateMode, str] = AggregateMode.SUM,
) -> Dataset:
    """
    Bucket rows by calendar interval (day, week, month, quarter, year) and
    aggregate `value_key` per bucket. Empty buckets are skipped.
    """
    if interval not in TIME_INTERVALS:
        raise ValueError(
            f"Unknown interval {interval!r}; expected one of {sorted(TIME_INTERVALS)}"
        )
    agg = AggregateMode(aggregation)
    df = _records_frame(rows, [time_key, value_key])
    df[time_key] = pd.to_datetime(df[time_key], errors="coerce")
    df[value_key] = pd.to_numeric(df[value_key], errors="coerce").fillna(0.0)
    df = df.dropna(subset=[time_key])

    grouped = df.groupby(pd.Grouper(key=time_key, freq=TIME_INTERVALS[interval]))[value_key]
    method = {
        AggregateMode.SUM: "sum",
        AggregateMode.AVERAGE: "mean",
        AggregateMode.MAX: "max",
        AggregateMode.MIN: "min",
    }[agg]
    series = getattr(grouped, method)()
    counts = grouped.count()

    out: Dataset = []
    for bucket, value in series.items():
        if counts.loc[bucket] == 0:
            continue
        value = float(value)
        out.append(
            Entry(
                label=bucket.strftime("%Y-%m-%d"),
                stacks=(
                    Segment(
                        value=value,
                        color=POSITIVE_COLOR if value >= 0 else NEGATIVE_COLOR,
                        label=f"{'+' if value >= 0 else ''}{value:.2f}",
                    ),
                ),
            )
        )
    return out


def variance_waterfall(
    rows: Any,
    category_key: str,
    actual_key: str = "actual",
    budget_key: str = "budget",
) -> Dataset:
    """One entry per row whose single segment is `actual - budget`."""
    df = _records_frame(rows, [category_key])
    actual = (
        pd.to_numeric(df[actual_key], errors="coerce").fillna(0.0)
        if actual_key in df.columns
        else pd.Series(0.0, index=df.index)
    )
    budget = (
        pd.to_numeric(df[budget_key], errors="coerce").fillna(0.0)
        if budget_key in df.columns
        else pd.Series(0.0, index=df.index)
    )
    variance = actual - budget

    out: Dataset = []
    for category, value in zip(df[category_key], variance):
        value = float(value)
        out.append(
            Entry(
                label=str(category),
                stacks=(
                    Segment(
                        value=value,
                        color=POSITIVE_COLOR if value >= 0 else NEGATIVE_COLOR,
                        label=f"Variance: {'+' if value >= 0 else ''}{value:.2f}",
                    ),
                ),
            )
        )
    return out


class DataProcessor:
    """
    Stateless bundle of dataset operators. Every call is independent; the
    bundle only exists so hosts can hand one object to their chart code.
    """

    validate_data = staticmethod(validate_data)
    aggregate_data = staticmethod(aggregate_data)
    sort_data = staticmethod(sort_data)
    filter_data = staticmethod(filter_data)
    transform_stacks = staticmethod(transform_stacks)
    transform_entries = staticmethod(transform_entries)
    normalize_values = staticmethod(normalize_values)
    group_by_category = staticmethod(group_by_category)
    calculate_percentages = staticmethod(calculate_percentages)
    interpolate_data = staticmethod(interpolate_data)
    generate_sample_data = staticmethod(generate_sample_data)
    describe_data = staticmethod(describe_data)
    cumulative_totals = staticmethod(cumulative_totals)
    to_frame = staticmethod(to_frame)
    breakdown_waterfall = staticmethod(breakdown_waterfall)
    temporal_waterfall = staticmethod(temporal_waterfall)
    variance_waterfall = staticmethod(variance_waterfall)


def create_data_processor() -> DataProcessor:
    return DataProcessor()
