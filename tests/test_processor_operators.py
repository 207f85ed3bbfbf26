import numpy as np
import pytest

from waterfall_core.models import Entry, Segment
from waterfall_core.processor import (
    SAMPLE_COLORS,
    AggregateMode,
    DataProcessor,
    aggregate_data,
    calculate_percentages,
    create_data_processor,
    cumulative_totals,
    describe_data,
    filter_data,
    generate_sample_data,
    group_by_category,
    interpolate_data,
    normalize_values,
    sort_data,
    transform_entries,
    transform_stacks,
)
from waterfall_core.validation import ShapeMismatch, TypeMismatch, ValidationError


def _e(label, *values, color="#123"):
    return Entry(label=label, stacks=tuple(Segment(value=float(v), color=color) for v in values))


def _values(dataset):
    return [[s.value for s in e.stacks] for e in dataset]


def test_sort_by_label_ascending():
    out = sort_data([_e("B", 1), _e("A", 2)], "label", "ascending")
    assert [e.label for e in out] == ["A", "B"]


def test_sort_by_label_is_case_insensitive():
    out = sort_data([_e("b", 1), _e("A", 1), _e("C", 1)], "label")
    assert [e.label for e in out] == ["A", "b", "C"]


def test_sort_by_total_uses_absolute_value_descending():
    data = [_e("neg", -50), _e("mid", 30), _e("low", 10)]
    out = sort_data(data, "total", "descending")
    assert [e.total for e in out] == [-50, 30, 10]


@pytest.mark.parametrize("direction", ["ascending", "descending"])
def test_sort_is_stable_for_equal_keys(direction):
    data = [_e("first", 5), _e("second", -5), _e("third", 5)]
    out = sort_data(data, "total", direction)
    assert [e.label for e in out] == ["first", "second", "third"]


def test_sort_by_stack_keys():
    data = [_e("A", 1, 2, 3), _e("B", 9), _e("C", -4, 4)]
    assert [e.label for e in sort_data(data, "maxStack")] == ["A", "C", "B"]
    assert [e.label for e in sort_data(data, "minStack")] == ["C", "A", "B"]
    assert [e.label for e in sort_data(data, "stackCount", "descending")] == ["A", "C", "B"]


def test_sort_unknown_key_raises():
    with pytest.raises(ValueError):
        sort_data([_e("A", 1)], "weight")


def test_sort_does_not_mutate_input():
    data = [_e("B", 1), _e("A", 2)]
    sort_data(data, "label")
    assert [e.label for e in data] == ["B", "A"]


@pytest.mark.parametrize(
    "mode, expected",
    [
        (AggregateMode.SUM, 6.0),
        ("average", 2.0),
        ("max", 5.0),
        ("min", -2.0),
    ],
)
def test_aggregate_modes(mode, expected):
    data = [_e("A", 3, -2, 5)]
    out = aggregate_data(data, mode)
    assert out[0].aggregated_value == pytest.approx(expected)
    assert out[0].original_stacks == data[0].stacks
    assert out[0].stacks == data[0].stacks


def test_aggregate_unknown_mode_raises():
    with pytest.raises(ValueError):
        aggregate_data([_e("A", 1)], "median")


def test_filter_and_transforms():
    data = [_e("A", 1), _e("B", -3), _e("C", 4)]
    kept = filter_data(data, lambda e: e.total > 0)
    assert [e.label for e in kept] == ["A", "C"]

    doubled = transform_stacks(data, lambda s: Segment(value=s.value * 2, color=s.color))
    assert _values(doubled) == [[2.0], [-6.0], [8.0]]

    renamed = transform_entries(data, lambda e: Entry(label=e.label.lower(), stacks=e.stacks))
    assert [e.label for e in renamed] == ["a", "b", "c"]


@pytest.mark.parametrize("op", [filter_data, transform_stacks, transform_entries, group_by_category])
def test_non_callable_argument_raises_type_mismatch(op):
    with pytest.raises(TypeMismatch):
        op([_e("A", 1)], "not callable")


def test_validation_runs_before_callable_check():
    with pytest.raises(ValidationError):
        filter_data([], "not callable")


def test_normalize_largest_magnitude_becomes_target():
    out = normalize_values([_e("A", 50, -200), _e("B", 100)], 100)
    assert _values(out) == [[25.0, -100.0], [50.0]]
    assert [s.original_value for s in out[0].stacks] == [50.0, -200.0]


def test_normalize_when_max_already_at_target():
    out = normalize_values([_e("A", 50), _e("B", -100)], 100)
    assert _values(out) == [[50.0], [-100.0]]
    assert [e.stacks[0].original_value for e in out] == [50.0, -100.0]


def test_normalize_custom_target():
    out = normalize_values([_e("A", 4, 2)], 1)
    assert _values(out) == [[1.0, 0.5]]


def test_normalize_all_zero_is_unchanged():
    data = [_e("A", 0, 0), _e("B", 0)]
    out = normalize_values(data)
    assert _values(out) == [[0.0, 0.0], [0.0]]
    assert all(s.original_value is None for e in out for s in e.stacks)


def test_group_by_category_keeps_order():
    data = [_e("a1", 1), _e("b1", 2), _e("a2", 3)]
    groups = group_by_category(data, lambda e: e.label[0])
    assert list(groups) == ["a", "b"]
    assert [e.label for e in groups["a"]] == ["a1", "a2"]


def test_percentages_use_absolute_total():
    out = calculate_percentages([_e("A", 3, -1)])
    assert [s.percentage for s in out[0].stacks] == [75.0, 25.0]


def test_percentages_of_zero_entry_are_zero():
    out = calculate_percentages([_e("A", 0, 0)])
    assert [s.percentage for s in out[0].stacks] == [0.0, 0.0]


def test_interpolate_endpoints_and_midpoint():
    a = [Entry(label="A", stacks=(Segment(value=10.0, color="#a", label="x"),))]
    b = [Entry(label="B", stacks=(Segment(value=30.0, color="#b", label="y"),))]
    assert _values(interpolate_data(a, b, 0)) == [[10.0]]
    assert _values(interpolate_data(a, b, 1)) == [[30.0]]
    mid = interpolate_data(a, b, 0.5)
    assert _values(mid) == [[20.0]]
    assert mid[0].label == "A"
    assert (mid[0].stacks[0].color, mid[0].stacks[0].label) == ("#a", "x")


def test_interpolate_keeps_other_segment_fields_from_first_dataset():
    a = [Entry(label="A", stacks=(Segment(value=10.0, color="#a", percentage=40.0, original_value=5.0),))]
    b = [Entry(label="B", stacks=(Segment(value=30.0, color="#b", percentage=90.0),))]
    seg = interpolate_data(a, b, 0)[0].stacks[0]
    assert seg.value == 10.0
    assert seg.percentage == 40.0
    assert seg.original_value == 5.0
    assert interpolate_data(a, b, 0.5)[0].stacks[0].percentage == 40.0


def test_interpolate_does_not_clamp_t():
    out = interpolate_data([_e("A", 0)], [_e("A", 10)], 1.5)
    assert _values(out) == [[15.0]]


def test_interpolate_shape_mismatch():
    with pytest.raises(ShapeMismatch):
        interpolate_data([_e("A", 1)], [_e("A", 1), _e("B", 2)], 0.5)
    with pytest.raises(ShapeMismatch):
        interpolate_data([_e("A", 1)], [_e("A", 1, 2)], 0.5)


def test_generate_sample_data_shape_and_determinism():
    data = generate_sample_data(6, 3, random_state=42)
    assert len(data) == 6
    assert [e.label for e in data] == [f"Category {i}" for i in range(1, 7)]
    for e in data:
        assert 1 <= len(e.stacks) <= 3
        for j, s in enumerate(e.stacks):
            assert 10 <= abs(s.value) <= 100
            assert s.color == SAMPLE_COLORS[j]
            assert s.label == str(int(np.floor(s.value + 0.5)))
    again = generate_sample_data(6, 3, random_state=42)
    assert _values(again) == _values(data)


def test_generate_sample_data_accepts_generator_and_custom_range():
    rng = np.random.default_rng(0)
    data = generate_sample_data(20, 1, value_range=(1, 2), random_state=rng)
    assert all(1 <= abs(e.stacks[0].value) <= 2 for e in data)


@pytest.mark.parametrize("count, stacks", [(0, 3), (3, 0)])
def test_generate_sample_data_rejects_bad_counts(count, stacks):
    with pytest.raises(ValueError):
        generate_sample_data(count, stacks)


def test_describe_and_cumulative_totals():
    data = [_e("A", 10, -4, color="#1"), _e("B", 5, color="#2")]
    summary = describe_data(data)
    assert summary.total_items == 2
    assert summary.total_stacks == 3
    assert summary.value_range == (-4.0, 10.0)
    assert summary.cumulative_total == 11.0
    assert summary.stack_colors == ["#1", "#2"]
    assert summary.labels == ["A", "B"]
    assert cumulative_totals(data) == [6.0, 11.0]


@pytest.mark.parametrize(
    "call",
    [
        lambda d: sort_data(d),
        lambda d: aggregate_data(d),
        lambda d: normalize_values(d),
        lambda d: calculate_percentages(d),
        lambda d: describe_data(d),
    ],
)
def test_operators_validate_input(call):
    with pytest.raises(ValidationError):
        call([])
    with pytest.raises(ValidationError):
        call([{"label": "A", "stacks": [{"value": "x", "color": "#fff"}]}])


def test_operators_accept_mappings():
    out = sort_data([{"label": "B", "stacks": [{"value": 1, "color": "#f"}]},
                     {"label": "A", "stacks": [{"value": 2, "color": "#f"}]}])
    assert all(isinstance(e, Entry) for e in out)
    assert [e.label for e in out] == ["A", "B"]


def test_data_processor_factory():
    proc = create_data_processor()
    assert isinstance(proc, DataProcessor)
    assert proc is not create_data_processor()
    out = proc.sort_data([_e("B", 1), _e("A", 1)], "label")
    assert [e.label for e in out] == ["A", "B"]
    assert proc.validate_data([_e("A", 1)]) is True
