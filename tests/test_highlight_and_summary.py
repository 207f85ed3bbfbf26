import pytest

from waterfall_core.models import Entry, Segment
from waterfall_core.processor import aggregate_data
from waterfall_core.selection import (
    Highlight,
    compute_summary,
    create_selection_engine,
    highlight_selection,
)
from waterfall_core.validation import TypeMismatch


def _data():
    return [
        Entry(label="A", stacks=(Segment(4.0, "#1"), Segment(-1.0, "#1"))),
        Entry(label="B", stacks=(Segment(10.0, "#1"),)),
        Entry(label="C", stacks=(Segment(-6.0, "#1"),)),
    ]


def test_empty_indices_pass_everything_through():
    out = highlight_selection(_data(), [])
    assert [h.opacity for h in out] == [1.0, 1.0, 1.0]
    assert all(not h.selected for h in out)
    assert all(h.css_class == "unselected" for h in out)


def test_selected_entries_are_opaque_others_dimmed():
    out = highlight_selection(3, [0, 2])
    assert out == [
        Highlight(0, True, 1.0, "selected"),
        Highlight(1, False, 0.3, "unselected"),
        Highlight(2, True, 1.0, "selected"),
    ]


def test_custom_opacities_and_classes():
    out = highlight_selection(2, [1], selected_opacity=0.9, unselected_opacity=0.1,
                              selected_class="on", unselected_class="off")
    assert [(h.opacity, h.css_class) for h in out] == [(0.1, "off"), (0.9, "on")]


def test_summary_of_totals():
    s = compute_summary(_data())
    assert s.count == 3
    assert s.sum == pytest.approx(7.0)
    assert s.average == pytest.approx(7.0 / 3)
    assert (s.min, s.max) == (-6.0, 10.0)
    assert s.extent == (-6.0, 10.0)


def test_summary_prefers_aggregated_value():
    data = aggregate_data(_data(), "max")
    s = compute_summary(data)
    assert s.sum == pytest.approx(4.0 + 10.0 - 6.0)


def test_summary_with_accessor():
    s = compute_summary(_data(), lambda e: e.stack_count)
    assert s.sum == 4.0
    assert s.max == 2.0


def test_summary_of_empty_subset():
    s = compute_summary([])
    assert (s.count, s.sum, s.average, s.min, s.max) == (0, 0.0, 0.0, 0.0, 0.0)
    assert s.extent is None


def test_summary_rejects_non_callable_accessor():
    with pytest.raises(TypeMismatch):
        compute_summary(_data(), "total")


def test_engine_highlight_follows_selection_and_options():
    class Band:
        def __call__(self, key):
            return {"A": 0.0, "B": 100.0, "C": 200.0}[key]

        def bandwidth(self):
            return 100.0

    engine = create_selection_engine(x_scale=Band()).load(_data())
    assert [h.opacity for h in engine.highlight()] == [1.0, 1.0, 1.0]

    engine.set_selection((120, 180))
    assert [h.selected for h in engine.highlight()] == [False, True, False]
    assert [h.opacity for h in engine.highlight()] == [0.3, 1.0, 0.3]

    # A committed selection over nothing keeps everything visible
    engine.set_selection((10, 20))
    assert engine.selected_indices() == []
    assert [h.opacity for h in engine.highlight()] == [1.0, 1.0, 1.0]

    assert [h.selected for h in engine.highlight([0])] == [True, False, False]


def test_engine_summary_uses_loaded_values():
    engine = create_selection_engine().load(_data(), values=[1.0, 2.0, 3.0])
    assert engine.summary().sum == 6.0
    assert engine.compute_summary(engine.selected_entries()).sum == pytest.approx(7.0)
