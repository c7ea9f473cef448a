"""
Tests for the simulation reference counters and workspace preparation
"""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from opsim.exceptions import ConsistencyError, InvalidArgumentError, KeyNotFoundError
from opsim.simulation_ref import (
    advance,
    make_reference,
    prepare_workspace,
    record_date,
    reset_counts,
    set_current_time,
)

START = datetime(2024, 1, 1)


def make_ref(steps=3, stages=(1, 2)):
    return make_reference("raw", "models", "results", steps, stages, current_time=START)


def test_counters_start_at_zero():
    """Test every declared (step, stage) starts at 0"""
    ref = make_ref()
    assert ref.steps == 3
    assert ref.stage_keys == (1, 2)
    assert all(count == 0 for stages in ref.run_count.values() for count in stages.values())
    assert ref.reset is True


def test_advance_counts_one_cell():
    """Test advancing (2, 1) three times leaves every other counter at 0"""
    ref = make_ref()
    for expected in (1, 2, 3):
        assert advance(ref, 2, 1) == expected

    assert ref.get_count(2, 1) == 3
    for step in (1, 2, 3):
        for stage in (1, 2):
            if (step, stage) != (2, 1):
                assert ref.get_count(step, stage) == 0


def test_advance_undeclared_fails():
    """Test steps or stages outside the declared shape raise KeyNotFoundError"""
    ref = make_ref()
    with pytest.raises(KeyNotFoundError):
        advance(ref, 4, 1)
    with pytest.raises(KeyNotFoundError):
        advance(ref, 1, 3)


def test_make_reference_validation():
    """Test zero steps or no stages are rejected"""
    with pytest.raises(InvalidArgumentError):
        make_reference("raw", "models", "results", 0, [1])
    with pytest.raises(InvalidArgumentError):
        make_reference("raw", "models", "results", 2, [])


def test_record_date():
    """Test the first visit records the date and a conflicting one is rejected"""
    ref = make_ref()
    record_date(ref, 1, START)
    record_date(ref, 1, START)
    assert ref.date_ref == {1: START}

    with pytest.raises(ConsistencyError):
        record_date(ref, 1, START + timedelta(hours=1))
    with pytest.raises(KeyNotFoundError):
        record_date(ref, 9, START)


def test_current_time_is_monotonic():
    """Test the simulation clock cannot move backwards"""
    ref = make_ref()
    set_current_time(ref, START + timedelta(days=1))
    assert ref.current_time == START + timedelta(days=1)

    with pytest.raises(ConsistencyError):
        set_current_time(ref, START)


def test_reset_counts():
    """Test explicit reset zeroes counters and forgets dates"""
    ref = make_ref()
    advance(ref, 1, 2)
    record_date(ref, 1, START)

    reset_counts(ref)

    assert ref.get_count(1, 2) == 0
    assert ref.date_ref == {}


def test_to_dict():
    """Test the snapshot is JSON friendly"""
    ref = make_ref(steps=1, stages=(1,))
    record_date(ref, 1, START)
    snapshot = ref.to_dict()
    assert snapshot["run_count"] == {1: {1: 0}}
    assert snapshot["date_ref"] == {1: START.isoformat()}
    assert snapshot["current_time"] == START.isoformat()


def test_prepare_workspace_layout(tmp_path):
    """Test the run folder holds raw output, models and results folders"""
    now = datetime(2024, 3, 5, 14, 30, 45)
    raw, models, results = prepare_workspace("ed", tmp_path, now=now)

    run_dir = tmp_path / "ed" / "2024-03-05T14-30"
    assert Path(raw) == run_dir / "raw_output"
    assert Path(models) == run_dir / "models_json"
    assert Path(results) == run_dir / "results"
    assert all(Path(p).is_dir() for p in (raw, models, results))


def test_prepare_workspace_collision_gets_suffix(tmp_path):
    """Test two runs in the same minute get distinct folders"""
    now = datetime(2024, 3, 5, 14, 30)
    first = prepare_workspace("ed", tmp_path, now=now)
    second = prepare_workspace("ed", tmp_path, now=now + timedelta(seconds=20))
    third = prepare_workspace("ed", tmp_path, now=now)

    assert len({first[0], second[0], third[0]}) == 3
    assert Path(second[0]).parent.name == "2024-03-05T14-30-1"
    assert Path(third[0]).parent.name == "2024-03-05T14-30-2"


def test_prepare_workspace_requires_directory(tmp_path):
    """Test a missing parent folder is rejected"""
    with pytest.raises(InvalidArgumentError):
        prepare_workspace("ed", tmp_path / "missing")

    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("x")
    with pytest.raises(InvalidArgumentError):
        prepare_workspace("ed", not_a_dir)
