import itertools

import pandas as pd
import pytest
import yaml

from segmerge.config import MergeConfig
from segmerge.core import merge_tables, run_merge, save_summary, summarize_merge
from segmerge.errors import ConfigurationError


def _cells_by_point(output: pd.DataFrame) -> dict:
    return dict(zip(output["transcript_id"], output["cell"]))


def _partition(output: pd.DataFrame) -> set[frozenset]:
    assigned = output[output["cell"] != 0]
    return {frozenset(g["transcript_id"]) for _, g in assigned.groupby("cell")}


def _overlapping_fovs(make_table):
    return [
        make_table(
            "fov1",
            [("1", "1"), ("2", "1"), ("3", "1"), ("5", "2"), ("6", "2"), ("9", None)],
            extras={"gene": ["g1", "g2", "g3", "g5", "g6", "g9"]},
        ),
        make_table(
            "fov2",
            [("2", "1"), ("3", "1"), ("4", "1"), ("6", "3"), ("7", "3"), ("8", "3")],
            extras={"gene": ["g2", "g3", "g4", "g6", "g7", "g8"]},
        ),
        make_table(
            "fov3",
            [("7", "5"), ("8", "5"), ("10", "6"), ("11", None)],
            extras={"gene": ["g7", "g8", "g10", "g11"]},
        ),
    ]


def test_iou_example_merges_at_low_threshold(make_table):
    tables = [
        make_table("file1", [("1", "A"), ("2", "A"), ("3", "A")]),
        make_table("file2", [("2", "B"), ("3", "B"), ("4", "B")]),
    ]

    merged = _cells_by_point(merge_tables(tables, threshold=0.2).output)
    split = _cells_by_point(merge_tables(tables, threshold=0.6).output)

    assert set(merged.values()) == {1}
    assert split == {"1": 1, "2": 1, "3": 1, "4": 2}


def test_transitive_merge_across_three_files(make_table):
    tables = [
        make_table("file1", [(p, "A") for p in ["1", "2", "3", "7", "8", "9", "10"]]),
        make_table("file2", [(p, "B") for p in ["1", "2", "3", "4", "5", "6"]]),
        make_table("file3", [(p, "C") for p in ["5", "6", "11", "12"]]),
    ]

    run = merge_tables(tables, threshold=0.2)

    assert run.groups.n_groups == 1
    assert set(run.output["cell"]) == {1}
    assert len(run.output) == 12


def test_output_has_one_row_per_point(make_table):
    tables = _overlapping_fovs(make_table)

    output = merge_tables(tables, threshold=0.2).output

    all_points = set().union(*(set(t.frame["transcript_id"]) for t in tables))
    assert sorted(output["transcript_id"]) == sorted(all_points)
    assert output["transcript_id"].is_unique
    assert list(output.columns) == ["transcript_id", "cell", "gene"]
    assert (output["gene"] == "g" + output["transcript_id"]).all()


def test_unassigned_points_pass_through(make_table):
    output = merge_tables(_overlapping_fovs(make_table), threshold=0.2).output
    cells = _cells_by_point(output)

    assert cells["9"] == 0
    assert cells["11"] == 0
    assert 0 not in {cells[p] for p in ["1", "2", "3", "4", "5", "6", "7", "8", "10"]}


def test_expected_partition(make_table):
    output = merge_tables(_overlapping_fovs(make_table), threshold=0.2).output

    assert _partition(output) == {
        frozenset({"1", "2", "3", "4"}),
        frozenset({"5", "6", "7", "8"}),
        frozenset({"10"}),
    }


def test_result_does_not_depend_on_file_order(make_table):
    tables = _overlapping_fovs(make_table)
    reference = merge_tables(tables, threshold=0.2).output

    for permutation in itertools.permutations(tables):
        output = merge_tables(list(permutation), threshold=0.2).output
        pd.testing.assert_frame_equal(output, reference)


def test_lower_threshold_only_coarsens_groups(make_table):
    tables = _overlapping_fovs(make_table)
    thresholds = [0.9, 0.5, 0.3, 0.2, 0.1, 0.0]
    outputs = [_cells_by_point(merge_tables(tables, threshold=t).output) for t in thresholds]

    for higher, lower in zip(outputs, outputs[1:]):
        for p, q in itertools.combinations(higher, 2):
            if higher[p] != 0 and higher[p] == higher[q]:
                assert lower[p] == lower[q]


def test_single_file_keeps_cells(make_table):
    table = make_table(
        "fov1",
        [("1", "12"), ("2", "12"), ("3", "4"), ("4", None), ("5", "cell-x")],
    )

    with pytest.warns(UserWarning, match="Only one input file"):
        output = merge_tables([table], threshold=0.0).output

    assert _cells_by_point(output) == {"1": 2, "2": 2, "3": 1, "4": 0, "5": 3}


def test_assigned_label_wins_over_unassigned(make_table):
    tables = [
        make_table("fov1", [("1", None), ("2", None)]),
        make_table("fov2", [("1", "8"), ("2", None)]),
    ]

    cells = _cells_by_point(merge_tables(tables).output)

    assert cells == {"1": 1, "2": 0}


def test_point_in_unmerged_cells_takes_the_larger_cell(make_table):
    tables = [
        make_table("fov1", [("1", "a"), ("2", "a"), ("3", "a"), ("4", "a"), ("5", "a")]),
        make_table("fov2", [("5", "b"), ("6", "b")]),
    ]

    run = merge_tables(tables, threshold=0.5)
    cells = _cells_by_point(run.output)

    assert run.groups.n_groups == 2
    assert cells["5"] == cells["1"]
    assert cells["6"] != cells["1"]


def test_duplicate_sources_are_rejected(make_table):
    table = make_table("fov1", [("1", "1")])

    with pytest.raises(ConfigurationError, match="more than once"):
        merge_tables([table, table])

    with pytest.raises(ConfigurationError):
        merge_tables([])


def test_summary(make_table, tmp_path):
    run = merge_tables(_overlapping_fovs(make_table), threshold=0.2)

    summary = summarize_merge(run)

    assert summary["n_sources"] == 3
    assert summary["n_points"] == 11
    assert summary["n_unassigned_points"] == 2
    assert summary["n_assigned_points"] == 9
    assert summary["n_input_cells"] == 6
    assert summary["n_merged_cells"] == 3
    assert summary["n_merged_pairs"] == 3
    assert summary["sources"]["fov3"] == {"points": 4, "cells": 2}
    assert 0.2 < summary["mean_iou"] <= 1.0

    path = save_summary(summary, tmp_path / "reports" / "summary.yaml")
    assert yaml.safe_load(path.read_text())["n_merged_cells"] == 3


def test_run_merge_writes_output(write_csv, tmp_path):
    file1 = write_csv(
        "fov1.csv",
        {"transcript_id": [1, 2, 3, 9], "cell": [1, 1, 1, 0], "gene": ["a", "b", "c", "d"]},
    )
    file2 = write_csv(
        "fov2.csv",
        {"transcript_id": [2, 3, 4], "cell": [5, 5, 5], "gene": ["b", "c", "e"]},
    )
    outfile = tmp_path / "out" / "merged.csv"
    summary_file = tmp_path / "summary.yaml"
    config = MergeConfig(
        additional_columns=["gene"],
        outfile=str(outfile),
        summary_file=str(summary_file),
        verbose=False,
    )

    run = run_merge([file1, file2], config)

    assert run.output_path == outfile
    df = pd.read_csv(outfile)
    assert list(df.columns) == ["transcript_id", "cell", "gene"]
    assert dict(zip(df["transcript_id"], df["cell"])) == {1: 1, 2: 1, 3: 1, 9: 0, 4: 1}
    assert yaml.safe_load(summary_file.read_text())["n_merged_cells"] == 1


def test_run_merge_with_workers_matches_serial(write_csv, tmp_path):
    files = [
        write_csv(f"fov{i}.csv", {"transcript_id": [i, i + 1, i + 2], "cell": [1, 1, 2]})
        for i in range(6)
    ]

    serial = run_merge(
        files,
        MergeConfig(additional_columns=[], outfile=str(tmp_path / "a.csv"), verbose=False),
    )
    threaded = run_merge(
        files,
        MergeConfig(
            additional_columns=[], outfile=str(tmp_path / "b.csv"), workers=3, verbose=False
        ),
    )

    pd.testing.assert_frame_equal(serial.output, threaded.output)
    assert serial.edges == threaded.edges
