"""
Selection (brush) engine.

Owns the current pixel-space selection, maps it onto dataset entries through
the scale adapters, and notifies listeners on start / change / end / clear.

State machine:
- IDLE:      no active selection (selection is None)
- DRAGGING:  pointer down; every move recomputes the subset and emits "change"
- COMMITTED: pointer released over a non-empty region; emits "end"

Mapping never raises: entries a scale cannot place are simply not selected,
and a missing selection selects every entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

import numpy as np

from .models import Entry, SelectionSummary, as_entry
from .scales import ScaleAdapter, adapt_scale
from .validation import ShapeMismatch, TypeMismatch, validate

logger = logging.getLogger(__name__)

BRUSH_TYPES = ("x", "y", "xy")
OVERLAY_CLASS = "waterfall-brush"


class SelectionState(Enum):
    IDLE = auto()
    DRAGGING = auto()
    COMMITTED = auto()


class EventKind(str, Enum):
    START = "start"
    CHANGE = "change"
    END = "end"
    CLEAR = "clear"


@dataclass(frozen=True)
class SelectionRange:
    """1-D pixel selection along the brush axis."""

    low: float
    high: float

    @property
    def is_empty(self) -> bool:
        return self.high <= self.low


@dataclass(frozen=True)
class SelectionRect:
    """2-D pixel selection."""

    x_range: Tuple[float, float]
    y_range: Tuple[float, float]

    @property
    def is_empty(self) -> bool:
        return self.x_range[1] <= self.x_range[0] or self.y_range[1] <= self.y_range[0]


Selection = Union[SelectionRange, SelectionRect]


@dataclass
class SelectionOptions:
    """
    Brush geometry and highlight styling.

    Attributes:
        type: "x", "y" or "xy"
        extent: ((x0, y0), (x1, y1)) pixel region the brush may cover
        clamp_to_extent: Clip incoming selections to `extent`
    """

    type: str = "x"
    extent: Tuple[Tuple[float, float], Tuple[float, float]] = ((0.0, 0.0), (800.0, 400.0))
    selected_opacity: float = 1.0
    unselected_opacity: float = 0.3
    selected_class: str = "selected"
    unselected_class: str = "unselected"
    clamp_to_extent: bool = True

    def __post_init__(self) -> None:
        if self.type not in BRUSH_TYPES:
            raise ValueError(f"Brush type must be one of {BRUSH_TYPES}, got {self.type!r}")


@dataclass(frozen=True)
class Highlight:
    index: int
    selected: bool
    opacity: float
    css_class: str


@dataclass(frozen=True)
class SelectionEvent:
    kind: EventKind
    source: Any
    selection: Optional[Selection]
    indices: Tuple[int, ...] = ()
    entries: Tuple[Entry, ...] = ()
    summary: SelectionSummary = field(default_factory=SelectionSummary)


Listener = Callable[[SelectionEvent, Optional[Selection]], Any]


class SelectionContainer(Protocol):
    """What the engine needs from the host's drawing surface."""

    def append_overlay(self, extent: Any, css_class: str) -> Any: ...

    def listen(
        self,
        on_start: Callable[[Any, Any], Any],
        on_move: Callable[[Any, Any], Any],
        on_end: Callable[[Any, Any], Any],
    ) -> None: ...

    def apply_styles(self, highlights: List[Highlight]) -> None: ...


def _ordered(a: Any, b: Any) -> Tuple[float, float]:
    a, b = float(a), float(b)
    return (a, b) if a <= b else (b, a)


def _clip(bounds: Tuple[float, float], lo: float, hi: float) -> Tuple[float, float]:
    lo, hi = _ordered(lo, hi)
    return min(max(bounds[0], lo), hi), min(max(bounds[1], lo), hi)


def normalize_selection(
    raw: Any,
    brush_type: str = "x",
    extent: Optional[Tuple[Tuple[float, float], Tuple[float, float]]] = None,
) -> Optional[Selection]:
    """
    Coerce a host-supplied selection into SelectionRange / SelectionRect.

    Accepted shapes: None; SelectionRange / SelectionRect; (a, b) for 1-D
    brushes; ((x0, y0), (x1, y1)) for any brush; mappings with "low"/"high"
    or "x"/"y" keys. Bounds are ordered and, when `extent` is given, clipped.

    Raises:
        TypeMismatch: If `raw` has none of the accepted shapes
    """
    if raw is None:
        return None

    try:
        if isinstance(raw, (SelectionRange, SelectionRect)):
            sel = raw
        elif isinstance(raw, Mapping):
            if "low" in raw and "high" in raw:
                sel = SelectionRange(*_ordered(raw["low"], raw["high"]))
            else:
                sel = SelectionRect(_ordered(*raw["x"]), _ordered(*raw["y"]))
        else:
            first, second = raw
            if isinstance(first, (tuple, list)):
                (x0, y0), (x1, y1) = first, second
                sel = SelectionRect(_ordered(x0, x1), _ordered(y0, y1))
            else:
                sel = SelectionRange(*_ordered(first, second))
    except (TypeError, ValueError, KeyError) as e:
        raise TypeMismatch(f"Unrecognized selection {raw!r}: {e}") from e

    # Project onto the brush dimensionality
    if brush_type == "xy" and isinstance(sel, SelectionRange):
        raise TypeMismatch(f"An 'xy' brush needs a 2-D selection, got {raw!r}")
    if brush_type == "x" and isinstance(sel, SelectionRect):
        sel = SelectionRange(*sel.x_range)
    elif brush_type == "y" and isinstance(sel, SelectionRect):
        sel = SelectionRange(*sel.y_range)

    if extent is not None:
        (ex0, ey0), (ex1, ey1) = extent
        if isinstance(sel, SelectionRect):
            sel = SelectionRect(
                _clip(sel.x_range, ex0, ex1), _clip(sel.y_range, ey0, ey1)
            )
        else:
            lo, hi = (ex0, ex1) if brush_type == "x" else (ey0, ey1)
            sel = SelectionRange(*_clip((sel.low, sel.high), lo, hi))
    return sel


def default_value(entry: Entry) -> float:
    """An entry's aggregated value when set, else the sum of its segments."""
    if entry.aggregated_value is not None:
        return float(entry.aggregated_value)
    return float(entry.total)


def compute_summary(
    entries: Sequence[Entry],
    value_accessor: Optional[Callable[[Entry], float]] = None,
) -> SelectionSummary:
    """
    Count, sum, mean, min, max and [min, max] extent over the chosen numeric
    field. An empty subset yields zeros and extent None.
    """
    if value_accessor is not None and not callable(value_accessor):
        raise TypeMismatch("value_accessor must be a function")
    accessor = value_accessor or default_value
    return _summarize([float(accessor(e)) for e in entries])


def _summarize(values: Sequence[float]) -> SelectionSummary:
    if len(values) == 0:
        return SelectionSummary()
    arr = np.asarray(values, dtype=float)
    lo, hi = float(arr.min()), float(arr.max())
    return SelectionSummary(
        count=int(arr.size),
        sum=float(arr.sum()),
        average=float(arr.mean()),
        min=lo,
        max=hi,
        extent=(lo, hi),
    )


def highlight_selection(
    entries: Union[int, Sequence[Any]],
    selected_indices: Sequence[int],
    selected_opacity: float = 1.0,
    unselected_opacity: float = 0.3,
    selected_class: str = "selected",
    unselected_class: str = "unselected",
) -> List[Highlight]:
    """
    Per-entry selected flag and opacity. With no selected indices nothing is
    excluded and every entry keeps full opacity.
    """
    count = entries if isinstance(entries, int) else len(entries)
    chosen = set(selected_indices)
    nothing_chosen = len(chosen) == 0
    out: List[Highlight] = []
    for i in range(count):
        selected = i in chosen
        if nothing_chosen:
            opacity = 1.0
        else:
            opacity = selected_opacity if selected else unselected_opacity
        out.append(
            Highlight(
                index=i,
                selected=selected,
                opacity=opacity,
                css_class=selected_class if selected else unselected_class,
            )
        )
    return out


class SelectionEngine:
    """
    Holds the selection for one chart and maps it onto the loaded dataset.

    The dataset is validated once in load(); pixel positions are cached there
    and in set_scales(), so each pointer move is a single linear scan.
    """

    def __init__(
        self,
        options: Optional[SelectionOptions] = None,
        x_scale: Any = None,
        y_scale: Any = None,
        x_key: Optional[Callable[[Entry], Any]] = None,
        y_key: Optional[Callable[[Entry], Any]] = None,
        value_accessor: Optional[Callable[[Entry], float]] = None,
    ) -> None:
        for name, fn in (("x_key", x_key), ("y_key", y_key), ("value_accessor", value_accessor)):
            if fn is not None and not callable(fn):
                raise TypeMismatch(f"{name} must be a function")

        self.options = options or SelectionOptions()
        self._x_key = x_key
        self._y_key = y_key
        self._value_accessor = value_accessor or default_value
        self._x_adapter: Optional[ScaleAdapter] = None
        self._y_adapter: Optional[ScaleAdapter] = None

        self._entries: List[Entry] = []
        self._values: List[float] = []
        self._x_positions: List[Optional[float]] = []
        self._y_positions: List[Optional[float]] = []

        self._state = SelectionState.IDLE
        self._selection: Optional[Selection] = None
        self._listeners: Dict[EventKind, List[Listener]] = {k: [] for k in EventKind}
        self._container: Optional[SelectionContainer] = None

        self.set_scales(x_scale, y_scale)

    # -------------------------
    # Data and scales
    # -------------------------
    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def entries(self) -> List[Entry]:
        return list(self._entries)

    def load(
        self, dataset: Sequence[Any], values: Optional[Sequence[float]] = None
    ) -> "SelectionEngine":
        """
        Validate and index a dataset. `values` overrides the numeric field used
        for summaries and y-mapping (e.g. cumulative totals).

        Raises:
            ValidationError: If a non-empty dataset is malformed
            ShapeMismatch: If `values` does not have one item per entry
        """
        if len(dataset) == 0:
            entries: List[Entry] = []
        else:
            validate(dataset)
            entries = [as_entry(e) for e in dataset]

        if values is not None:
            if len(values) != len(entries):
                raise ShapeMismatch(
                    f"Expected {len(entries)} values, got {len(values)}"
                )
            resolved = [float(v) for v in values]
        else:
            resolved = [float(self._value_accessor(e)) for e in entries]

        self._entries = entries
        self._values = resolved
        self._index_positions()
        logger.debug("Selection engine loaded %d entries", len(entries))
        return self

    def set_scales(self, x_scale: Any = None, y_scale: Any = None) -> "SelectionEngine":
        """
        Replace the scales and re-index positions.

        Raises:
            ConfigurationError: If a scale has neither bandwidth() nor invert()
        """
        self._x_adapter = None if x_scale is None else adapt_scale(x_scale)
        self._y_adapter = None if y_scale is None else adapt_scale(y_scale)
        self._index_positions()
        return self

    def _index_positions(self) -> None:
        self._x_positions = self._positions(self._x_adapter, self._x_key, "x")
        self._y_positions = self._positions(self._y_adapter, self._y_key, "y")

    def _positions(
        self,
        adapter: Optional[ScaleAdapter],
        key_fn: Optional[Callable[[Entry], Any]],
        axis: str,
    ) -> List[Optional[float]]:
        if adapter is None:
            return [None] * len(self._entries)
        out: List[Optional[float]] = []
        for i, e in enumerate(self._entries):
            if key_fn is not None:
                try:
                    key = key_fn(e)
                except (KeyError, ValueError, TypeError, AttributeError):
                    out.append(None)
                    continue
            elif axis == "y" and adapter.kind == "continuous":
                key = self._values[i]
            else:
                key = e.label
            out.append(adapter.position(key))
        return out

    # -------------------------
    # Listeners
    # -------------------------
    def on(self, kind: Union[EventKind, str], callback: Listener) -> "SelectionEngine":
        if not callable(callback):
            raise TypeMismatch("Selection listener must be a function")
        self._listeners[EventKind(kind)].append(callback)
        return self

    def on_start(self, callback: Listener) -> "SelectionEngine":
        return self.on(EventKind.START, callback)

    def on_change(self, callback: Listener) -> "SelectionEngine":
        return self.on(EventKind.CHANGE, callback)

    def on_end(self, callback: Listener) -> "SelectionEngine":
        return self.on(EventKind.END, callback)

    def on_clear(self, callback: Listener) -> "SelectionEngine":
        return self.on(EventKind.CLEAR, callback)

    def off(
        self, kind: Union[EventKind, str], callback: Optional[Listener] = None
    ) -> "SelectionEngine":
        """Remove one listener, or every listener of `kind` when callback is None."""
        listeners = self._listeners[EventKind(kind)]
        if callback is None:
            listeners.clear()
        else:
            self._listeners[EventKind(kind)] = [cb for cb in listeners if cb is not callback]
        return self

    def _emit(self, kind: EventKind, source: Any) -> SelectionEvent:
        indices = self.selected_indices()
        event = SelectionEvent(
            kind=kind,
            source=source,
            selection=self._selection,
            indices=tuple(indices),
            entries=tuple(self._entries[i] for i in indices),
            summary=_summarize([self._values[i] for i in indices]),
        )
        for callback in list(self._listeners[kind]):
            callback(event, self._selection)
        return event

    # -------------------------
    # Pointer lifecycle
    # -------------------------
    def _normalize(self, raw: Any) -> Optional[Selection]:
        extent = self.options.extent if self.options.clamp_to_extent else None
        return normalize_selection(raw, self.options.type, extent)

    def start(self, raw_event: Any = None, selection: Any = None) -> SelectionEvent:
        """Begin a drag. A drag already in progress is discarded."""
        if self._state is SelectionState.DRAGGING:
            logger.debug("New drag started while dragging; previous drag dropped")
        self._selection = self._normalize(selection)
        self._state = SelectionState.DRAGGING
        return self._emit(EventKind.START, raw_event)

    def move(self, raw_event: Any, selection: Any) -> Optional[SelectionEvent]:
        """Update the dragged region. Ignored unless a drag is in progress."""
        if self._state is not SelectionState.DRAGGING:
            return None
        self._selection = self._normalize(selection)
        return self._emit(EventKind.CHANGE, raw_event)

    def end(self, raw_event: Any, selection: Any) -> SelectionEvent:
        """
        Finish a drag. A non-empty region commits; an empty or zero-width one
        clears the selection.
        """
        sel = self._normalize(selection)
        if sel is None or sel.is_empty:
            self._selection = None
            self._state = SelectionState.IDLE
        else:
            self._selection = sel
            self._state = SelectionState.COMMITTED
        event = self._emit(EventKind.END, raw_event)
        self._restyle()
        return event

    def get_selection(self) -> Optional[Selection]:
        return self._selection

    def set_selection(self, selection: Any) -> SelectionEvent:
        """Programmatically select a region; None or an empty region clears."""
        sel = self._normalize(selection)
        if sel is None or sel.is_empty:
            return self.clear_selection()
        self._selection = sel
        self._state = SelectionState.COMMITTED
        event = self._emit(EventKind.END, None)
        self._restyle()
        return event

    def clear_selection(self) -> SelectionEvent:
        self._selection = None
        self._state = SelectionState.IDLE
        event = self._emit(EventKind.CLEAR, None)
        self._restyle()
        return event

    # -------------------------
    # Mapping
    # -------------------------
    def _contains(self, index: int, sel: Selection) -> bool:
        if isinstance(sel, SelectionRect):
            return self._within(self._x_adapter, self._x_positions[index], sel.x_range) and self._within(
                self._y_adapter, self._y_positions[index], sel.y_range
            )
        if self.options.type == "y":
            return self._within(self._y_adapter, self._y_positions[index], (sel.low, sel.high))
        return self._within(self._x_adapter, self._x_positions[index], (sel.low, sel.high))

    @staticmethod
    def _within(
        adapter: Optional[ScaleAdapter], pos: Optional[float], bounds: Tuple[float, float]
    ) -> bool:
        if adapter is None:
            # No scale on this axis: the axis does not constrain the selection
            return True
        if pos is None:
            return False
        return bounds[0] <= pos <= bounds[1]

    def selected_indices(self, selection: Any = ...) -> List[int]:
        """
        Indices of entries inside `selection` (the current selection when
        omitted). None or an empty region selects every entry.
        """
        sel = self._selection if selection is ... else self._normalize(selection)
        if sel is None or sel.is_empty:
            return list(range(len(self._entries)))
        return [i for i in range(len(self._entries)) if self._contains(i, sel)]

    def selected_entries(self, selection: Any = ...) -> List[Entry]:
        return [self._entries[i] for i in self.selected_indices(selection)]

    def summary(self, selection: Any = ...) -> SelectionSummary:
        return _summarize([self._values[i] for i in self.selected_indices(selection)])

    def compute_summary(
        self,
        selected_entries: Sequence[Entry],
        value_accessor: Optional[Callable[[Entry], float]] = None,
    ) -> SelectionSummary:
        return compute_summary(selected_entries, value_accessor or self._value_accessor)

    def selection_bounds(self, selection: Any = ...) -> Optional[Any]:
        """
        Express the selection in data space: inverted values for continuous
        scales, the pixel range for banded ones. None without a selection or a
        scale on the brushed axis.
        """
        sel = self._selection if selection is ... else self._normalize(selection)
        if sel is None:
            return None
        if isinstance(sel, SelectionRect):
            if self._x_adapter is None or self._y_adapter is None:
                return None
            return (
                self._x_adapter.bounds(*sel.x_range),
                self._y_adapter.bounds(*sel.y_range),
            )
        adapter = self._y_adapter if self.options.type == "y" else self._x_adapter
        if adapter is None:
            return None
        return adapter.bounds(sel.low, sel.high)

    def highlight(self, indices: Optional[Sequence[int]] = None) -> List[Highlight]:
        """Highlight flags for the current selection (or explicit indices)."""
        if indices is None:
            indices = [] if self._selection is None else self.selected_indices()
        return highlight_selection(
            len(self._entries),
            indices,
            selected_opacity=self.options.selected_opacity,
            unselected_opacity=self.options.unselected_opacity,
            selected_class=self.options.selected_class,
            unselected_class=self.options.unselected_class,
        )

    # -------------------------
    # Host container
    # -------------------------
    def attach(self, container: SelectionContainer) -> "SelectionEngine":
        """Add the brush overlay to `container` and route its pointer events here."""
        container.append_overlay(self.options.extent, OVERLAY_CLASS)
        container.listen(self.start, self.move, self.end)
        self._container = container
        return self

    def detach(self) -> "SelectionEngine":
        self._container = None
        return self

    def _restyle(self) -> None:
        if self._container is not None:
            self._container.apply_styles(self.highlight())


def create_selection_engine(
    options: Optional[SelectionOptions] = None, **kwargs: Any
) -> SelectionEngine:
    return SelectionEngine(options, **kwargs)
