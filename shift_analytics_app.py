"""
JEE shift analytics command line.
Loads per-shift aggregates (live API or a local file), ranks shifts by
difficulty, predicts percentiles and exports the results.
"""

import argparse
import logging
import sys
import threading

import pandas as pd

from shift_config import load_settings, PLACEHOLDER
from shift_aggregator import (
    SUBJECTS, SORT_MODES, ViewState, aggregate_shifts, population_overview,
    toughest_by_subject, ordered_for_display, current_shift,
)
from shift_data_source import (
    DataSourceError, ShiftDataSession, fetch_comparative_scores, load_records, summaries_to_frame,
)
from percentile_predictor import predict_percentile

logger = logging.getLogger(__name__)

TABLE_COLUMNS = ['Rank', 'Shift', 'Students', 'Mean', 'Median', 'SD', 'Skew',
                 'P99 Score', 'P98 Score', 'Elite %']

# Marker columns and the ViewState toggle that shows each one
MARKER_COLUMNS = {
    'P99 Score': 'show_p99_line',
    'P98 Score': 'show_p98_line',
    'Elite %': 'show_elite_line',
}


def view_state_from_args(args):
    """ViewState for one command; subcommands without an option get its default"""
    return ViewState(
        selected_shift_id=getattr(args, 'shift', None),
        sort_mode=getattr(args, 'sort', 'mean'),
        show_elite_line=not getattr(args, 'hide_elite', False),
        show_p99_line=not getattr(args, 'hide_p99', False),
        show_p98_line=not getattr(args, 'hide_p98', False),
    )


def load_summaries(args):
    """Raw records from --file or the API, aggregated"""
    if args.file:
        records = load_records(args.file)
    else:
        records = fetch_comparative_scores(load_settings())
    summaries = aggregate_shifts(records)
    logger.info(f"{len(summaries)} of {len(records)} shifts retained")
    return summaries


def overview_lines(summaries):
    overview = population_overview(summaries)
    lines = [
        f"Total Students: {overview['total_students']:,}",
        f"Global Median: {overview['global_median']:.1f}",
        f"Global 150+ Ratio: {overview['global_top_ratio']:.2f}%",
    ]
    hardest = overview['hardest_shift']
    if hardest is not None:
        lines.append(f"Hardest Shift: {hardest.id} (mean {hardest.avg}, median {hardest.median})")
    return lines


def subject_lines(summaries, n=3):
    lines = []
    for subject in SUBJECTS:
        ranked = toughest_by_subject(summaries, subject, n)
        entries = ", ".join(f"#{i} {s.id} ({getattr(s, subject):.1f})" for i, s in enumerate(ranked, start=1))
        lines.append(f"{subject.title()} toughest: {entries}")
    return lines


def visible_columns(view_state):
    return [col for col in TABLE_COLUMNS
            if col not in MARKER_COLUMNS or getattr(view_state, MARKER_COLUMNS[col])]


def leaderboard_table(summaries, view_state=None):
    """Summary table in display order; Rank stays the difficulty rank"""
    view_state = view_state or ViewState()
    df = summaries_to_frame(summaries)
    if df.empty:
        return df
    position = {id(s): i for i, s in enumerate(summaries)}
    rows = [position[id(s)] for s in ordered_for_display(summaries, view_state)]
    return df.iloc[rows][visible_columns(view_state)]


def summary_report(summaries, view_state=None):
    """Markdown report of the current shift comparison"""
    view_state = view_state or ViewState()
    report = "# JEE Shift Difficulty Report\n\n## Population\n"
    report += "".join(f"- {line}\n" for line in overview_lines(summaries))
    report += "\n## Subject Difficulty\n"
    report += "".join(f"- {line}\n" for line in subject_lines(summaries))
    report += "\n## Shifts (hardest first)\n"
    for i, s in enumerate(summaries, start=1):
        parts = [f"mean {s.avg}", f"median {s.median}", f"sd {s.sd}"]
        if view_state.show_p99_line:
            parts.append(f"P99 {s.predicted99}")
        if view_state.show_p98_line:
            parts.append(f"P98 {s.predicted98}")
        if view_state.show_elite_line:
            parts.append(f"elite {s.elite_ratio}%")
        report += f"- **{i}. {s.id}**: {', '.join(parts)}\n"
    report += f"\nGenerated on {pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
    return report


def prediction_line(summaries, view_state, score):
    """One "<shift>: <score> marks -> <percentile>" line and the raw result"""
    shift = current_shift(summaries, view_state)
    if shift is None and view_state.selected_shift_id:
        logger.error(f"Shift '{view_state.selected_shift_id}' not found")
    result = predict_percentile(score, shift)
    label = shift.id if shift is not None else "no shift"
    return f"{label}: {score} marks -> {result}", result


# ---------- Commands ----------
def cmd_leaderboard(args):
    summaries = load_summaries(args)
    for line in overview_lines(summaries):
        print(line)
    print()
    for line in subject_lines(summaries):
        print(line)
    print()
    table = leaderboard_table(summaries, view_state_from_args(args))
    print(table.to_string(index=False) if not table.empty else "No shifts with enough candidates.")
    return 0


def cmd_predict(args):
    summaries = load_summaries(args)
    line, result = prediction_line(summaries, view_state_from_args(args), args.score)
    print(line)
    return 0 if result != PLACEHOLDER else 1


def cmd_export(args):
    summaries = load_summaries(args)
    summaries_to_frame(summaries).to_csv(args.output, index=False)
    logger.info(f"Wrote {len(summaries)} shifts to {args.output}")
    if args.report:
        with open(args.report, 'w', encoding='utf-8') as f:
            f.write(summary_report(summaries, view_state_from_args(args)))
        logger.info(f"Wrote summary report to {args.report}")
    return 0


def cmd_watch(args, stop=None):
    """
    Refresh on an interval until stopped, Ctrl-C or --max-refreshes.
    A failed refresh is logged and the previous table is shown again.
    """
    settings = load_settings()
    interval = args.interval if args.interval is not None else settings['refresh_interval']
    view_state = view_state_from_args(args)
    stop = stop or threading.Event()

    if args.file:
        fetch = lambda: load_records(args.file)
    else:
        fetch = lambda: fetch_comparative_scores(settings)

    ticks = 0
    with ShiftDataSession(fetch=fetch, settings=settings) as session:
        try:
            while not stop.is_set():
                try:
                    session.refresh()
                except DataSourceError as e:
                    logger.error(f"Shift Analytics Sync Error: {e}")
                summaries = session.summaries
                if summaries:
                    print(leaderboard_table(summaries, view_state).to_string(index=False))
                    if args.score is not None:
                        print(prediction_line(summaries, view_state, args.score)[0])
                ticks += 1
                if args.max_refreshes and ticks >= args.max_refreshes:
                    stop.set()
                stop.wait(interval)
        except KeyboardInterrupt:
            logger.info("Stopped watching")
    return 0


def add_view_options(parser):
    parser.add_argument("--sort", choices=SORT_MODES, default="mean")
    parser.add_argument("--hide-elite", action="store_true", help="Leave out the 150+ ratio")
    parser.add_argument("--hide-p99", action="store_true", help="Leave out the 99th-percentile score")
    parser.add_argument("--hide-p98", action="store_true", help="Leave out the 98th-percentile score")


def build_parser():
    parser = argparse.ArgumentParser(description="JEE shift-wise difficulty and percentile analytics")
    parser.add_argument("--file", help="Read shift records from a JSON or CSV file instead of the API")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("leaderboard", help="Rank shifts by difficulty")
    add_view_options(p)
    p.set_defaults(func=cmd_leaderboard)

    p = sub.add_parser("predict", help="Predict the percentile for a score")
    p.add_argument("score", help="Marks out of 300")
    p.add_argument("--shift", help="Shift id (default: hardest shift)")
    p.set_defaults(func=cmd_predict)

    p = sub.add_parser("export", help="Export shift summaries")
    p.add_argument("-o", "--output", default="shift_summaries.csv")
    p.add_argument("--report", help="Also write a markdown summary report")
    add_view_options(p)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("watch", help="Refresh from the API on an interval")
    p.add_argument("--interval", type=float, help="Seconds between refreshes")
    p.add_argument("--max-refreshes", type=int, help="Stop after this many refreshes")
    p.add_argument("--score", help="Score to re-predict after each refresh")
    p.add_argument("--shift", help="Shift id for --score (default: hardest shift)")
    add_view_options(p)
    p.set_defaults(func=cmd_watch)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except DataSourceError as e:
        logger.error(f"Shift Analytics Sync Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
