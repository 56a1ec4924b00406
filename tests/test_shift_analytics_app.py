import json
import threading

import pandas as pd
import pytest

import shift_analytics_app
from shift_analytics_app import (
    TABLE_COLUMNS, build_parser, cmd_watch, leaderboard_table, main, summary_report,
)
from shift_aggregator import ViewState, aggregate_shifts
from shift_data_source import DataSourceError

from conftest import STANDARD_COUNTS, make_record


@pytest.fixture
def shifts_file(tmp_path):
    records = [
        make_record("24 Jan S1", STANDARD_COUNTS, 50.0, 50.0, 50.0),
        make_record("22 Jan S2", STANDARD_COUNTS, 40.0, 40.0, 40.0),
        make_record("Tiny", [1] * 12),
    ]
    path = tmp_path / "shifts.json"
    path.write_text(json.dumps({"success": True, "data": {"comparativeScores": records}}), encoding='utf-8')
    return str(path)


class TestLeaderboard:
    def test_prints_overview_and_table(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "leaderboard"]) == 0
        out = capsys.readouterr().out
        assert "Total Students: 2,000" in out
        assert "Hardest Shift: 22 Jan S2" in out
        assert "24 Jan S1" in out
        assert "Tiny" not in out

    def test_date_sort(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "leaderboard", "--sort", "date"]) == 0
        out = capsys.readouterr().out
        table = out[out.index("Rank"):]
        # 24 Jan S1 -> 2*10+4, 22 Jan S2 -> 2*10+2
        assert table.index("22 Jan S2") < table.index("24 Jan S1")


class TestPredict:
    def test_named_shift(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "predict", "150", "--shift", "24 Jan S1"]) == 0
        assert "24 Jan S1: 150 marks -> 91.60%" in capsys.readouterr().out

    def test_defaults_to_hardest_shift(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "predict", "0"]) == 0
        assert capsys.readouterr().out.startswith("22 Jan S2: 0 marks -> 5.00%")

    def test_invalid_score(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "predict", "305"]) == 1
        assert "---" in capsys.readouterr().out

    def test_unknown_shift(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "predict", "150", "--shift", "Nope"]) == 1
        assert "no shift: 150 marks -> ---" in capsys.readouterr().out


class TestExport:
    def test_csv_and_report(self, shifts_file, tmp_path):
        output = tmp_path / "out.csv"
        report = tmp_path / "report.md"
        assert main(["--file", shifts_file, "export", "-o", str(output), "--report", str(report)]) == 0

        df = pd.read_csv(output)
        assert list(df['Shift']) == ["22 Jan S2", "24 Jan S1"]
        assert list(df['Students']) == [1000, 1000]

        text = report.read_text(encoding='utf-8')
        assert text.startswith("# JEE Shift Difficulty Report")
        assert "**1. 22 Jan S2**" in text

    def test_summary_report_empty(self):
        assert "Total Students: 0" in summary_report(aggregate_shifts([]))


class TestDataSourceFailure:
    def test_missing_file_exits_with_error(self, tmp_path):
        assert main(["--file", str(tmp_path / "missing.json"), "leaderboard"]) == 1

    def test_api_failure(self, monkeypatch):
        def offline(settings):
            raise DataSourceError("offline")

        monkeypatch.setattr(shift_analytics_app, "fetch_comparative_scores", offline)
        assert main(["leaderboard"]) == 1


class TestViewToggles:
    def test_leaderboard_hides_p99(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "leaderboard", "--hide-p99"]) == 0
        out = capsys.readouterr().out
        assert "P99 Score" not in out
        assert "P98 Score" in out
        assert "Elite %" in out

    def test_leaderboard_hides_elite(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "leaderboard", "--hide-elite"]) == 0
        out = capsys.readouterr().out
        assert "Elite %" not in out
        assert "P99 Score" in out

    def test_table_columns_follow_view_state(self):
        summaries = aggregate_shifts([make_record("24 Jan S1", STANDARD_COUNTS)])
        table = leaderboard_table(summaries, ViewState(show_p98_line=False))
        assert 'P98 Score' not in table.columns
        assert 'P99 Score' in table.columns
        assert list(leaderboard_table(summaries).columns) == TABLE_COLUMNS

    def test_report_hides_markers(self):
        summaries = aggregate_shifts([make_record("24 Jan S1", STANDARD_COUNTS)])
        state = ViewState(show_elite_line=False, show_p99_line=False, show_p98_line=False)
        text = summary_report(summaries, state)
        assert "**1. 24 Jan S1**: mean 150.0, median 141.03, sd 56.81\n" in text
        assert "P99" not in text
        assert "elite" not in text

    def test_export_report_hides_p98_but_csv_keeps_it(self, shifts_file, tmp_path):
        output = tmp_path / "out.csv"
        report = tmp_path / "report.md"
        assert main(["--file", shifts_file, "export", "-o", str(output),
                     "--report", str(report), "--hide-p98"]) == 0
        assert 'P98 Score' in pd.read_csv(output).columns
        text = report.read_text(encoding='utf-8')
        assert "P98" not in text
        assert "P99 250.7" in text


class TestWatch:
    def test_failed_refresh_keeps_previous_table(self, monkeypatch, capsys, caplog):
        responses = [
            [make_record("24 Jan S1", STANDARD_COUNTS, 50.0, 50.0, 50.0)],
            DataSourceError("503 Service Unavailable"),
        ]

        def fetch(settings):
            result = responses.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        monkeypatch.setattr(shift_analytics_app, "fetch_comparative_scores", fetch)
        assert main(["watch", "--interval", "0", "--max-refreshes", "2", "--score", "150"]) == 0

        out = capsys.readouterr().out
        assert out.count("Rank") == 2
        assert out.count("24 Jan S1: 150 marks -> 91.60%") == 2
        assert "Shift Analytics Sync Error: 503 Service Unavailable" in caplog.text
        assert responses == []

    def test_reads_file_and_selected_shift(self, shifts_file, capsys):
        assert main(["--file", shifts_file, "watch", "--interval", "0", "--max-refreshes", "1",
                     "--score", "150", "--shift", "24 Jan S1"]) == 0
        assert "24 Jan S1: 150 marks -> 91.60%" in capsys.readouterr().out

    def test_stop_event_ends_loop(self, monkeypatch):
        def fetch(settings):
            raise AssertionError("no refresh once stopped")

        monkeypatch.setattr(shift_analytics_app, "fetch_comparative_scores", fetch)
        stop = threading.Event()
        stop.set()
        args = build_parser().parse_args(["watch", "--interval", "0"])
        assert cmd_watch(args, stop) == 0
