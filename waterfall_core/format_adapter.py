"""
Format Adapter
Converts free-form tabular rows (lists of dicts, DataFrames, CSV/TSV/JSON files)
into the canonical Entry/Segment shape. Malformed rows degrade to defaults;
validation is left to the operators that consume the result.
"""

import logging
import math
import re
from dataclasses import dataclass
from numbers import Real
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from .models import Entry, Segment, as_entry
from .validation import ValidationError, WaterfallError, validate_entry

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#3498db"

# Leading signed decimal, optionally with an exponent
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
# Thousands separators, whitespace and common currency symbols
_STRIP_RE = re.compile(r"[,\s$€£¥₹]")


class FileAccessError(WaterfallError):
    """Raised when a data file cannot be read or has an unsupported format."""

    pass


@dataclass
class FormatOptions:
    """
    Column mapping used when synthesizing entries from flat rows.

    Attributes:
        value_column: Column holding the segment value.
        label_column: Column holding the entry label.
        color_column: Column holding the segment color.
        stack_label_column: Column holding an explicit segment label.
        default_color: Color used when the color column is missing or blank.
        parse_numbers: Parse currency-formatted strings ("$1,234.50") into numbers.
            When False, non-numeric values become 0.
    """

    value_column: str = "value"
    label_column: str = "label"
    color_column: str = "color"
    stack_label_column: str = "stackLabel"
    default_color: str = DEFAULT_COLOR
    parse_numbers: bool = True


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # pd.isna on list-likes returns arrays
        return False


def parse_number(raw: str) -> float:
    """
    Parse a currency-formatted string into a float. Returns 0.0 when no
    leading number can be found.
    """
    cleaned = _STRIP_RE.sub("", raw)
    match = _NUMBER_RE.match(cleaned)
    if not match:
        return 0.0
    value = float(match.group(0))
    return value if math.isfinite(value) else 0.0


def _coerce_value(raw: Any, parse_numbers: bool) -> float:
    if isinstance(raw, Real) and not isinstance(raw, bool):
        value = float(raw)
        return value if math.isfinite(value) else 0.0
    if parse_numbers and isinstance(raw, str):
        return parse_number(raw)
    return 0.0


def format_signed(value: float) -> str:
    """Render a value with an explicit sign: 1500.0 -> '+1500', -12.5 -> '-12.5'."""
    text = str(int(value)) if float(value).is_integer() else repr(float(value))
    return f"+{text}" if value >= 0 else text


def _synthesize(row: Any, index: int, options: FormatOptions) -> Entry:
    get = row.get if isinstance(row, Mapping) else (lambda _k, _d=None: _d)

    raw_label = get(options.label_column)
    label = f"Item {index + 1}" if _is_blank(raw_label) else str(raw_label)

    value = _coerce_value(get(options.value_column), options.parse_numbers)

    raw_color = get(options.color_column)
    color = options.default_color if _is_blank(raw_color) else str(raw_color)

    raw_stack_label = get(options.stack_label_column)
    stack_label = (
        format_signed(value) if _is_blank(raw_stack_label) else str(raw_stack_label)
    )

    return Entry(label=label, stacks=(Segment(value=value, color=color, label=stack_label),))


def to_canonical(
    rows: Union[pd.DataFrame, Iterable[Any]],
    options: Optional[FormatOptions] = None,
) -> List[Entry]:
    """
    Convert rows into a canonical dataset.

    Entry instances pass through unchanged. Mappings that already validate as
    entries are converted as-is; everything else becomes a single-segment entry
    built from the configured columns.

    Args:
        rows: DataFrame or iterable of row mappings / Entry objects
        options: Column mapping and parsing options

    Returns:
        List[Entry]: One entry per input row, in input order
    """
    options = options or FormatOptions()
    if isinstance(rows, pd.DataFrame):
        rows = rows.to_dict(orient="records")

    out: List[Entry] = []
    for index, row in enumerate(rows):
        if isinstance(row, Entry):
            out.append(row)
            continue
        try:
            validate_entry(row, index)
        except ValidationError as e:
            logger.debug("Row %d synthesized from columns (%s)", index, e.rule)
            out.append(_synthesize(row, index, options))
        else:
            out.append(as_entry(row))
    return out


def load_rows(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Read a local CSV, TSV or JSON file into a list of row dicts.

    Raises:
        FileNotFoundError: If the file does not exist
        FileAccessError: If the path is not a file, the format is unsupported,
            or the file cannot be parsed
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")
    if not file_path.is_file():
        raise FileAccessError(f"Path is not a file: {file_path}")

    suffix = file_path.suffix.lower()
    try:
        if suffix == ".csv":
            df = pd.read_csv(file_path)
        elif suffix == ".tsv":
            df = pd.read_csv(file_path, sep="\t")
        elif suffix == ".json":
            df = pd.read_json(file_path, orient="records")
        else:
            raise FileAccessError(f"Unsupported file format: {file_path}")
    except pd.errors.EmptyDataError:
        return []
    except FileAccessError:
        raise
    except Exception as e:
        raise FileAccessError(f"Error reading data file: {e}") from e

    logger.debug("Loaded %d rows from %s", len(df), file_path)
    return df.to_dict(orient="records")


def load_data(
    path: Union[str, Path], options: Optional[FormatOptions] = None
) -> List[Entry]:
    """Load a local data file and convert its rows with to_canonical()."""
    return to_canonical(load_rows(path), options)
