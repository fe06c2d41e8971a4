import pytest

from csv_codec import ParsedTable, parse_csv
from table_view import (
    DATASET_NON_THREADS,
    DATASET_THREADS,
    CombinedRow,
    Highlight,
    SortDirection,
    SortSpec,
    ViewSession,
    anomaly_score_histogram,
    classify_score,
    filter_rows,
    has_anomaly_scores,
    highlight_rows,
    highlights_for_page,
    merge_tables,
    paginate,
    request_sort,
    row_details,
    sort_rows,
    source_counts,
    total_pages,
)


@pytest.fixture
def threads():
    return parse_csv("id,name,AnomalyScore\n1,alpha,0.7\n2,Beta,0.3\n3,gamma,")


@pytest.fixture
def non_threads():
    return parse_csv("id,label,AnomalyScore\n4,delta,0.95\n5,epsilon,n/a")


def test_merge_unions_headers_in_first_seen_order(threads, non_threads):
    merged = merge_tables(threads, non_threads)
    assert merged.headers == ["id", "name", "AnomalyScore", "label"]
    assert [row.source for row in merged.rows] == ["thread"] * 3 + ["non-thread"] * 2
    assert merged.rows[0].values["name"] == "alpha"
    assert merged.rows[3].values["label"] == "delta"


def test_merge_assigns_unique_keys(threads, non_threads):
    merged = merge_tables(threads, non_threads)
    keys = [row.key for row in merged.rows]
    assert len(set(keys)) == len(keys)
    assert keys[0] == "thread-0"
    assert keys[3] == "non-thread-0"


def test_merge_with_one_table(non_threads):
    merged = merge_tables(None, non_threads)
    assert merged.headers == ["id", "label", "AnomalyScore"]
    assert len(merged.rows) == 2


def test_merge_nothing():
    assert merge_tables(None, None) is None


def test_global_filter_is_case_insensitive(threads):
    rows = merge_tables(threads, None).rows
    assert [r.values["id"] for r in filter_rows(rows, "BETA")] == ["2"]


def test_global_filter_ignores_provenance(threads):
    rows = merge_tables(threads, None).rows
    assert filter_rows(rows, "thread") == []


def test_column_filters_must_all_match(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    result = filter_rows(rows, "", {"name": "a", "AnomalyScore": "0.7"})
    assert [r.values["id"] for r in result] == ["1"]


def test_empty_column_pattern_is_ignored(threads):
    rows = merge_tables(threads, None).rows
    assert len(filter_rows(rows, "", {"name": ""})) == 3


def test_missing_column_never_matches(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    result = filter_rows(rows, "", {"label": "undefined"})
    assert result == []
    result = filter_rows(rows, "", {"label": "e"})
    assert [r.values["id"] for r in result] == ["4", "5"]


def test_filter_is_idempotent(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    once = filter_rows(rows, "a", {"id": ""})
    twice = filter_rows(once, "a", {"id": ""})
    assert once == twice


def test_sort_ascending_and_descending(threads):
    rows = merge_tables(threads, None).rows
    asc = sort_rows(rows, SortSpec("name"))
    assert [r.values["name"] for r in asc] == ["Beta", "alpha", "gamma"]
    desc = sort_rows(rows, SortSpec("name", SortDirection.DESCENDING))
    assert [r.values["name"] for r in desc] == ["gamma", "alpha", "Beta"]


def test_sort_is_stable():
    rows = [CombinedRow(key=str(i), source="thread", values={"g": g}) for i, g in enumerate("baab")]
    asc = sort_rows(rows, SortSpec("g"))
    assert [r.key for r in asc] == ["1", "2", "0", "3"]
    desc = sort_rows(rows, SortSpec("g", SortDirection.DESCENDING))
    assert [r.key for r in desc] == ["0", "3", "1", "2"]


def test_sort_without_spec_keeps_order(threads):
    rows = merge_tables(threads, None).rows
    result = sort_rows(rows, None)
    assert result == rows
    assert result is not rows


def test_sort_puts_missing_cells_first(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    result = sort_rows(rows, SortSpec("label"))
    assert [r.source for r in result[:3]] == ["thread"] * 3


def test_request_sort_toggles_and_resets():
    spec = request_sort(None, "a")
    assert spec == SortSpec("a", SortDirection.ASCENDING)
    spec = request_sort(spec, "a")
    assert spec.direction == SortDirection.DESCENDING
    spec = request_sort(spec, "a")
    assert spec.direction == SortDirection.ASCENDING
    spec = request_sort(SortSpec("a", SortDirection.DESCENDING), "b")
    assert spec == SortSpec("b", SortDirection.ASCENDING)


def test_pagination():
    rows = list(range(120))
    assert len(paginate(rows, 1)) == 50
    assert paginate(rows, 3) == list(range(100, 120))
    assert paginate(rows, 4) == []
    assert paginate(rows, 0) == []
    assert total_pages(120) == 3
    assert total_pages(0) == 0


@pytest.mark.parametrize("value,expected", [
    ("0.7", Highlight.RED),
    ("0.3", Highlight.GREEN),
    ("0.5", Highlight.GREEN),
    (" 0.51 ", Highlight.RED),
    ("", Highlight.NONE),
    (None, Highlight.NONE),
    ("abc", Highlight.NONE),
    ("nan", Highlight.NONE),
])
def test_classify_score(value, expected):
    assert classify_score(value) == expected


def test_highlight_rows_disabled_is_empty(threads):
    rows = merge_tables(threads, None).rows
    assert highlight_rows(rows, False) == {}


def test_highlights_follow_rows_after_sorting(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    highlight_map = highlight_rows(rows, True)
    page = sort_rows(rows, SortSpec("AnomalyScore", SortDirection.DESCENDING))
    result = dict(zip((r.values["id"] for r in page), highlights_for_page(page, highlight_map)))
    assert result == {
        "1": Highlight.RED,
        "2": Highlight.GREEN,
        "3": Highlight.NONE,
        "4": Highlight.RED,
        "5": Highlight.NONE,
    }


def test_source_counts_drop_empty(threads):
    assert source_counts(threads, None) == [{"name": "Threads", "value": 3}]
    assert source_counts(threads, ParsedTable(headers=["id"])) == [{"name": "Threads", "value": 3}]


def test_anomaly_histogram(threads, non_threads):
    rows = merge_tables(threads, non_threads).rows
    bins = anomaly_score_histogram(rows)
    assert len(bins) == 10
    assert bins[0]["name"] == "0.0-0.1"
    assert bins[9]["name"] == "0.9-1.0"
    assert bins[7] == {"name": "0.7-0.8", "threads": 1, "nonThreads": 0}
    assert bins[3]["threads"] == 1
    assert bins[9]["nonThreads"] == 1
    assert has_anomaly_scores(rows)


def test_histogram_puts_one_in_last_bin_and_skips_out_of_range():
    rows = [
        CombinedRow(key="a", source="thread", values={"AnomalyScore": "1"}),
        CombinedRow(key="b", source="thread", values={"AnomalyScore": "1.5"}),
        CombinedRow(key="c", source="thread", values={"AnomalyScore": "-0.1"}),
    ]
    bins = anomaly_score_histogram(rows)
    assert bins[9]["threads"] == 1
    assert sum(b["threads"] for b in bins) == 1


def test_row_details(threads, non_threads):
    merged = merge_tables(threads, non_threads)
    details = row_details(merged, "non-thread-0")
    assert details[0] == {"header": "id", "value": "4"}
    assert {"header": "name", "value": ""} in details
    assert row_details(merged, "missing") is None
    assert row_details(None, "thread-0") is None


class TestViewSession:

    def test_empty_snapshot(self):
        view = ViewSession()
        snapshot = view.snapshot()
        assert snapshot["rows"] == []
        assert snapshot["total_rows"] == 0
        assert not view.has_data

    def test_filters_reset_page(self, threads):
        view = ViewSession(page_size=1)
        view.set_dataset(DATASET_THREADS, threads)
        view.set_page(3)
        view.set_filters("a", {"name": "", "id": "1"})
        assert view.page == 1
        assert view.column_filters == {"id": "1"}
        assert [r.values["id"] for r in view.visible_rows()] == ["1"]

    def test_highlight_recomputed_on_data_change(self, threads, non_threads):
        view = ViewSession()
        view.set_dataset(DATASET_THREADS, threads)
        view.set_highlighting(True)
        assert len(view.highlight_map) == 3
        view.set_dataset(DATASET_NON_THREADS, non_threads)
        assert len(view.highlight_map) == 5
        view.set_highlighting(False)
        assert view.highlight_map == {}

    def test_snapshot_page(self, threads, non_threads):
        view = ViewSession(page_size=2)
        view.set_dataset(DATASET_THREADS, threads)
        view.set_dataset(DATASET_NON_THREADS, non_threads)
        view.set_highlighting(True)
        view.sort_by("id")
        view.sort_by("id")
        view.set_page(1)
        snapshot = view.snapshot()
        assert snapshot["total_pages"] == 3
        assert snapshot["sort"] == {"key": "id", "direction": "descending"}
        assert [r["values"]["id"] for r in snapshot["rows"]] == ["5", "4"]
        assert [r["highlight"] for r in snapshot["rows"]] == ["none", "red"]

    def test_ai_mode_uses_stored_classifications(self, threads):
        view = ViewSession(highlight_mode="ai")
        view.set_dataset(DATASET_THREADS, threads)
        view.set_highlighting(True)
        assert view.needs_highlight_refresh
        view.store_highlights([Highlight.NONE, Highlight.RED, Highlight.NONE])
        assert not view.needs_highlight_refresh
        assert view.highlight_map["thread-1"] == Highlight.RED

    def test_reset_highlights_turns_flag_off(self, threads):
        view = ViewSession(highlight_mode="ai")
        view.set_dataset(DATASET_THREADS, threads)
        view.set_highlighting(True)
        view.reset_highlights()
        assert not view.highlight_enabled
        assert view.highlight_map == {}

    def test_clear(self, threads):
        view = ViewSession()
        view.set_dataset(DATASET_THREADS, threads)
        view.clear()
        assert view.merged is None
        assert view.chart_data()["sources"] == []

    def test_unknown_dataset(self, threads):
        with pytest.raises(KeyError):
            ViewSession().set_dataset("other", threads)
