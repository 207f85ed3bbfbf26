#!/usr/bin/env python3
"""
Waterfall Core - command-line pipeline.

This module exposes four functional units used by the CLI and the demo UI:
- load_dataset()
- transform_pipeline()
- select_subset()
- build_report()

Each takes explicit inputs and returns explicit outputs; printing and exit codes
are confined to main().
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .format_adapter import FileAccessError, FormatOptions, load_data
from .models import Entry, as_entry
from .processor import (
    AggregateMode,
    SortDirection,
    SortKey,
    aggregate_data,
    calculate_percentages,
    cumulative_totals,
    describe_data,
    generate_sample_data,
    normalize_values,
    sort_data,
    validate_data,
)
from .render import RenderParams, render_waterfall
from .scales import BandScale, LinearScale
from .selection import SelectionEngine, SelectionOptions, create_selection_engine
from .utils import json_dumps

# Configure logging for debugging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEBUG_ENV_VAR = "WATERFALL_CORE_DEBUG"


@dataclass
class RunParams:
    """
    Parameters for one pipeline run.

    Attributes:
        input_path: Local CSV/TSV/JSON file. When None, sample data is generated.
        sample_count: Number of sample entries generated when no input is given.
        max_stacks: Upper bound on segments per generated entry.
        seed: Seed for sample generation; None draws fresh entropy.
        format: Column mapping for flat input rows.
        sort_key / sort_direction: Optional reordering; None keeps input order.
        aggregate: Attach an aggregated value per entry (sum/average/max/min).
        normalize_target: Rescale values so the largest magnitude equals this.
        percentages: Attach per-segment percentages of absolute entry totals.
        selection: Optional (low, high) pixel range along the x axis.
        width / height: Pixel extent of the chart the selection refers to.
        output_svg: Where to write the rendered waterfall, if anywhere.
        as_json: Emit the report as JSON instead of text.
    """

    input_path: Optional[Path] = None
    sample_count: int = 8
    max_stacks: int = 4
    seed: Optional[int] = None
    format: FormatOptions = field(default_factory=FormatOptions)
    sort_key: Optional[SortKey] = None
    sort_direction: SortDirection = SortDirection.ASCENDING
    aggregate: Optional[AggregateMode] = None
    normalize_target: Optional[float] = None
    percentages: bool = False
    selection: Optional[Tuple[float, float]] = None
    width: float = 800.0
    height: float = 400.0
    output_svg: Optional[Path] = None
    as_json: bool = False


def get_default_params() -> RunParams:
    """Single authority for pipeline defaults (CLI, demo UI and tests)."""
    return RunParams()


def load_dataset(params: RunParams) -> List[Entry]:
    """
    Load the dataset named by params.input_path, or generate a sample one.

    Raises:
        FileNotFoundError: If the input file does not exist
        FileAccessError: If the input file cannot be parsed
        ValueError: If sample parameters are out of range
    """
    if params.input_path is not None:
        dataset = load_data(params.input_path, params.format)
        logger.info("Loaded %d entries from %s", len(dataset), params.input_path)
        return dataset

    dataset = generate_sample_data(
        params.sample_count, params.max_stacks, random_state=params.seed
    )
    logger.debug("Generated %d sample entries (seed=%s)", len(dataset), params.seed)
    return dataset


def transform_pipeline(dataset: Sequence[Any], params: RunParams) -> List[Entry]:
    """
    Apply the configured operators in a fixed order:
    aggregate -> sort -> normalize -> percentages.

    The dataset is validated up front, so an empty or malformed dataset raises
    ValidationError even when no operator is configured.
    """
    validate_data(dataset)
    out = [as_entry(e) for e in dataset]
    if params.aggregate is not None:
        out = aggregate_data(out, params.aggregate)
    if params.sort_key is not None:
        out = sort_data(out, params.sort_key, params.sort_direction)
    if params.normalize_target is not None:
        out = normalize_values(out, params.normalize_target)
    if params.percentages:
        out = calculate_percentages(out)
    return out


def build_engine(dataset: Sequence[Entry], width: float, height: float) -> SelectionEngine:
    """
    Selection engine over a waterfall laid out in a width x height chart:
    a band x scale over labels and a linear y scale over cumulative totals.
    Summaries and y-mapping use the cumulative totals too.
    """
    labels = [e.label for e in dataset]
    totals = cumulative_totals(dataset) if len(dataset) else []
    engine = create_selection_engine(
        SelectionOptions(type="x", extent=((0.0, 0.0), (width, height))),
        x_scale=BandScale(labels, range=(0.0, width)),
        y_scale=LinearScale.from_values(totals, range=(height, 0.0)),
    )
    return engine.load(dataset, values=totals)


def select_subset(dataset: Sequence[Entry], params: RunParams) -> SelectionEngine:
    """Build an engine for the dataset and commit params.selection, if any."""
    engine = build_engine(dataset, params.width, params.height)
    if params.selection is not None:
        engine.set_selection(params.selection)
    return engine


def build_report(dataset: Sequence[Entry], engine: SelectionEngine) -> Dict[str, Any]:
    """Report of the dataset and the current selection; serialize with json_dumps()."""
    indices = engine.selected_indices()
    selection = engine.get_selection()
    return {
        "data": describe_data(dataset),
        "cumulative_totals": cumulative_totals(dataset),
        "entries": list(dataset),
        "selection": {
            "range": None if selection is None else (selection.low, selection.high),
            "indices": indices,
            "labels": [dataset[i].label for i in indices],
            "summary": engine.summary(),
            "bounds": engine.selection_bounds(),
        },
    }


def format_text_report(report: Dict[str, Any]) -> str:
    data = report["data"]
    sel = report["selection"]
    summary = sel["summary"]
    lines = [
        f"Entries: {data.total_items}  Segments: {data.total_stacks}",
        f"Value range: {data.value_range[0]:.2f} .. {data.value_range[1]:.2f}",
        f"Cumulative total: {data.cumulative_total:.2f}",
        "",
    ]
    for entry, top in zip(report["entries"], report["cumulative_totals"]):
        lines.append(f"  {entry.label:<20} {entry.total:>12.2f} {top:>12.2f}")
    lines.append("")
    if sel["range"] is None:
        lines.append("Selection: none (all entries)")
    else:
        picked = ", ".join(sel["labels"]) or "no entries"
        lines.append(f"Selection: [{sel['range'][0]:.1f}, {sel['range'][1]:.1f}] -> {picked}")
    lines.append(
        f"  count={summary.count} sum={summary.sum:.2f} "
        f"average={summary.average:.2f} min={summary.min:.2f} max={summary.max:.2f}"
    )
    return "\n".join(lines)


def _orchestrate(params: RunParams) -> str:
    """
    Run the full pipeline and return the rendered report.
    Split from main() so the CLI can remain thin and tests can call this directly.
    """
    dataset = transform_pipeline(load_dataset(params), params)
    engine = select_subset(dataset, params)

    if params.output_svg is not None:
        render_waterfall(
            dataset,
            highlights=engine.highlight(),
            output_path=params.output_svg,
            params=RenderParams(title="Waterfall"),
        )
        logger.info("Wrote %s", params.output_svg)

    report = build_report(dataset, engine)
    if params.as_json:
        return json_dumps(report)
    return format_text_report(report)


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="waterfall-core",
        description="Waterfall pipeline (load -> transform -> select -> render).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    defaults = get_default_params()

    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help=f"Show full tracebacks for debugging (also {DEBUG_ENV_VAR}=1).",
    )

    g_load = parser.add_argument_group("Input")
    source = g_load.add_mutually_exclusive_group()
    source.add_argument("--input", type=str, help="CSV, TSV or JSON data file.")
    source.add_argument(
        "--sample",
        type=int,
        default=defaults.sample_count,
        help="Generate N sample entries when no --input is given.",
    )
    g_load.add_argument("--max-stacks", type=int, default=defaults.max_stacks)
    g_load.add_argument("--seed", type=int, default=defaults.seed)
    g_load.add_argument("--value-column", default=defaults.format.value_column)
    g_load.add_argument("--label-column", default=defaults.format.label_column)
    g_load.add_argument("--color-column", default=defaults.format.color_column)

    g_trans = parser.add_argument_group("Transforms")
    g_trans.add_argument("--sort", choices=[k.value for k in SortKey])
    g_trans.add_argument(
        "--direction",
        choices=[d.value for d in SortDirection],
        default=defaults.sort_direction.value,
    )
    g_trans.add_argument("--aggregate", choices=[m.value for m in AggregateMode])
    g_trans.add_argument(
        "--normalize",
        type=float,
        nargs="?",
        const=100.0,
        metavar="TARGET",
        help="Rescale so the largest magnitude equals TARGET (default 100).",
    )
    g_trans.add_argument(
        "--percentages",
        action="store_true",
        help="Attach per-segment percentages of the entry's absolute total.",
    )

    g_sel = parser.add_argument_group("Selection and output")
    g_sel.add_argument(
        "--select",
        type=float,
        nargs=2,
        metavar=("LOW", "HIGH"),
        help="Pixel range along the x axis to select.",
    )
    g_sel.add_argument("--width", type=float, default=defaults.width)
    g_sel.add_argument("--height", type=float, default=defaults.height)
    g_sel.add_argument("--output-svg", type=str, help="Write the waterfall figure here.")
    g_sel.add_argument("--json", action="store_true", help="Emit the report as JSON.")
    return parser


def _args_to_params(args) -> RunParams:
    return RunParams(
        input_path=Path(args.input) if args.input else None,
        sample_count=args.sample,
        max_stacks=args.max_stacks,
        seed=args.seed,
        format=FormatOptions(
            value_column=args.value_column,
            label_column=args.label_column,
            color_column=args.color_column,
        ),
        sort_key=SortKey(args.sort) if args.sort else None,
        sort_direction=SortDirection(args.direction),
        aggregate=AggregateMode(args.aggregate) if args.aggregate else None,
        normalize_target=args.normalize,
        percentages=args.percentages,
        selection=tuple(args.select) if args.select else None,
        width=args.width,
        height=args.height,
        output_svg=Path(args.output_svg) if args.output_svg else None,
        as_json=args.json,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, builds RunParams, then orchestrates.
    With no CLI args, defaults from get_default_params() are used.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    args = _build_cli_parser().parse_args(argv)

    if args.print_defaults:
        print(json_dumps(get_default_params()))
        return

    # Enable debug mode via --debug flag or environment variable
    debug_mode = bool(args.debug or os.getenv(DEBUG_ENV_VAR, "") == "1")
    if debug_mode:
        logging.getLogger("waterfall_core").setLevel(logging.DEBUG)

    try:
        output = _orchestrate(_args_to_params(args))
    except (FileNotFoundError, FileAccessError, ValueError, TypeError) as e:
        # Concise, user-facing errors for common/user-correctable problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        # Unexpected/internal errors: log full exception. Show traceback only when debugging.
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                f"Run with --debug or set {DEBUG_ENV_VAR}=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)

    print(output)


if __name__ == "__main__":
    main()
