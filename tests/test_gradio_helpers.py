import time

import matplotlib.pyplot as plt
import pytest

from waterfall_core import gradio_ui


def _elapsed_ok(func, *args, max_seconds=5, **kwargs):
    start = time.perf_counter()
    res = func(*args, **kwargs)
    elapsed = time.perf_counter() - start
    assert elapsed < max_seconds, f"Call took too long: {elapsed:.2f}s"
    return res


@pytest.mark.parametrize(
    "low, high, expected",
    [
        (None, None, None),
        (10, None, None),
        ("", "20", None),
        (10, 20, (10.0, 20.0)),
        ("300", "100.5", (100.5, 300.0)),
        ("abc", 5, None),
    ],
)
def test_parse_selection(low, high, expected):
    assert gradio_ui.parse_selection(low, high) == expected


def test_parse_optional_int():
    assert gradio_ui._parse_optional_int(None) is None
    assert gradio_ui._parse_optional_int(" ") is None
    assert gradio_ui._parse_optional_int(4.0) == 4
    assert gradio_ui._parse_optional_int("7") == 7
    assert gradio_ui._parse_optional_int("x") is None


def test_upload_path_variants(tmp_path):
    class Uploaded:
        name = "/tmp/a.csv"

    assert gradio_ui._upload_path(None) is None
    assert gradio_ui._upload_path({"name": "/tmp/b.csv"}) == "/tmp/b.csv"
    assert gradio_ui._upload_path({"tmp_path": "/tmp/c.csv"}) == "/tmp/c.csv"
    assert gradio_ui._upload_path(tmp_path / "d.csv") == str(tmp_path / "d.csv")
    assert gradio_ui._upload_path(Uploaded()) == "/tmp/a.csv"


def test_run_pipeline_with_sample_data():
    plt.close("all")
    fig, report = _elapsed_ok(
        gradio_ui._run_pipeline,
        None, 4, 11, "total", "descending", "sum", 100, True, 0, 400,
    )
    assert fig is not None
    assert "Entries: 4" in report
    assert "Selection: [0.0, 400.0]" in report
    assert plt.get_fignums() == []


def test_run_pipeline_reports_errors(tmp_path):
    fig, report = gradio_ui._run_pipeline(
        str(tmp_path / "missing.csv"), None, None, "none", "ascending", "none", None, False, None, None
    )
    assert fig is None
    assert report.startswith("Error running pipeline")
