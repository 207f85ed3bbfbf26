"""Gradio UI wrapper for the waterfall pipeline.

Generates sample data (or loads an uploaded file), applies the chosen
transforms and a pixel-range selection, and shows the highlighted waterfall
with a text report.
"""

import logging
import time
import traceback
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Tuple

import gradio as gr

# Backend selection is enforced in render.py before pyplot is imported.
from .main import (
    build_report,
    format_text_report,
    get_default_params,
    load_dataset,
    select_subset,
    transform_pipeline,
)
from .processor import AggregateMode, SortDirection, SortKey
from .render import RenderParams, render_waterfall

logger = logging.getLogger(__name__)

NO_SORT = "none"
NO_AGGREGATE = "none"


def _parse_optional_int(val: Any) -> Optional[int]:
    if val is None:
        return None
    try:
        s = val
        if isinstance(val, str):
            s = val.strip()
            if s == "":
                return None
        # Gradio numbers arrive as floats
        return int(float(s))
    except (TypeError, ValueError):
        return None


def _parse_optional_float(val: Any) -> Optional[float]:
    if val is None:
        return None
    if isinstance(val, str):
        val = val.strip()
        if val == "":
            return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def parse_selection(low: Any, high: Any) -> Optional[Tuple[float, float]]:
    """
    Turn the two selection fields into a (low, high) pixel range.
    Returns None unless both fields hold numbers.
    """
    lo, hi = _parse_optional_float(low), _parse_optional_float(high)
    if lo is None or hi is None:
        return None
    return (lo, hi) if lo <= hi else (hi, lo)


def _upload_path(file_obj: Any) -> Optional[str]:
    # gr.File returns a dict with "name" and "tmp_path" in some versions; accept both
    if file_obj is None:
        return None
    if isinstance(file_obj, dict):
        return file_obj.get("name") or file_obj.get("tmp_path")
    if isinstance(file_obj, (str, Path)):
        return str(file_obj)
    return getattr(file_obj, "name", None)


def _run_pipeline(
    uploaded_file_path: Optional[str],
    sample_count: Any,
    seed: Any,
    sort_key: str,
    sort_direction: str,
    aggregate: str,
    normalize_target: Any,
    percentages: bool,
    select_low: Any,
    select_high: Any,
):
    """
    Execute the pipeline and return (figure, report_text), or (None, error_text)
    on failure.
    """
    t0 = time.time()
    logger.info(f"_run_pipeline START - uploaded_file_path={uploaded_file_path!r}")

    defaults = get_default_params()
    params = replace(
        defaults,
        input_path=Path(uploaded_file_path) if uploaded_file_path else None,
        sample_count=_parse_optional_int(sample_count) or defaults.sample_count,
        seed=_parse_optional_int(seed),
        sort_key=None if sort_key in (None, NO_SORT) else SortKey(sort_key),
        sort_direction=SortDirection(sort_direction or defaults.sort_direction.value),
        aggregate=None if aggregate in (None, NO_AGGREGATE) else AggregateMode(aggregate),
        normalize_target=_parse_optional_float(normalize_target),
        percentages=bool(percentages),
        selection=parse_selection(select_low, select_high),
    )

    try:
        dataset = transform_pipeline(load_dataset(params), params)
        engine = select_subset(dataset, params)
        fig = render_waterfall(
            dataset,
            highlights=engine.highlight(),
            params=RenderParams(title="Waterfall"),
        )
        report_text = format_text_report(build_report(dataset, engine))
    except Exception as e:
        tb = traceback.format_exc()
        logger.debug(f"_run_pipeline EXCEPTION: {e}\n{tb}")
        return None, f"Error running pipeline\n{e}"

    logger.info(f"_run_pipeline END - elapsed={time.time() - t0:.2f}s")
    return fig, report_text


def _build_ui():
    with gr.Blocks() as demo:
        defaults = get_default_params()
        gr.Markdown("### Waterfall Core demo")
        gr.HTML("""
<style>
  #report_box textarea {
    font-family: "SF Mono", "Menlo", "Monaco", "Consolas", "Liberation Mono", "Courier New", monospace;
    font-size: 13px;
    line-height: 1.3;
    resize: vertical;
    min-height: 200px;
  }
</style>
""")
        with gr.Row():
            file_input = gr.File(
                label="Upload data (optional)", file_types=[".csv", ".tsv", ".json"]
            )
        with gr.Row():
            sample_count = gr.Number(
                label="sample entries (used when no file is uploaded)",
                value=defaults.sample_count,
                precision=0,
            )
            seed = gr.Number(
                label="seed (optional)",
                value=defaults.seed,
                precision=0,
            )
        with gr.Row():
            sort_key = gr.Dropdown(
                label="sort by",
                choices=[NO_SORT] + [k.value for k in SortKey],
                value=NO_SORT,
            )
            sort_direction = gr.Radio(
                label="direction",
                choices=[d.value for d in SortDirection],
                value=defaults.sort_direction.value,
            )
            aggregate = gr.Dropdown(
                label="aggregate",
                choices=[NO_AGGREGATE] + [m.value for m in AggregateMode],
                value=NO_AGGREGATE,
            )
        with gr.Row():
            normalize_target = gr.Number(
                label="normalize to (optional)", value=defaults.normalize_target
            )
            percentages = gr.Checkbox(label="percentages", value=defaults.percentages)
        with gr.Row():
            select_low = gr.Number(
                label=f"selection low (px, 0-{defaults.width:g})", value=None
            )
            select_high = gr.Number(
                label=f"selection high (px, 0-{defaults.width:g})", value=None
            )

        run_button = gr.Button("Run")
        output_plot = gr.Plot(label="Waterfall")
        report_code = gr.Textbox(
            value="", lines=20, interactive=False, elem_id="report_box", label="Report"
        )

        def _click(file_obj, *values):
            return _run_pipeline(_upload_path(file_obj), *values)

        run_button.click(
            _click,
            inputs=[
                file_input,
                sample_count,
                seed,
                sort_key,
                sort_direction,
                aggregate,
                normalize_target,
                percentages,
                select_low,
                select_high,
            ],
            outputs=[output_plot, report_code],
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
