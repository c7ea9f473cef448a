"""
Tests for problem serialization
"""

import json
import pickle

import pytest

from opsim.constants import SERIALIZED_PROBLEM_KIND
from opsim.economic_dispatch import BALANCE
from opsim.exceptions import DataFormatError
from opsim.models import ProblemTemplate
from opsim.problem import DecisionProblem
from opsim.tests.helpers import START, make_system
from opsim.utils.serialization import read_record


def build_problem(tmp_path, **overrides):
    settings = {"horizon": 24, "initial_time": START, "constraint_duals": [BALANCE]}
    settings.update(overrides)
    problem = DecisionProblem(ProblemTemplate(), make_system(), name="ED", **settings)
    problem.build(output_dir=tmp_path)
    return problem


def test_build_writes_artifacts(tmp_path):
    """Test a build with an output folder writes the record, system, summary and log"""
    build_problem(tmp_path)

    assert (tmp_path / "ED.bin").exists()
    assert (tmp_path / "test_system.json").exists()
    assert (tmp_path / "ED_build.log").exists()
    summary = json.loads((tmp_path / "ED_OptimizationModel.json").read_text())
    assert summary["initial_time"] == START.isoformat()
    assert summary["duals"] == [BALANCE]


def test_round_trip(tmp_path):
    """Test a problem is restored with its settings, template and system"""
    original = build_problem(tmp_path)

    restored = DecisionProblem.from_file(tmp_path / "ED.bin")

    assert isinstance(restored, DecisionProblem)
    assert restored.name == "ED"
    assert restored.settings.horizon == 24
    assert restored.settings.initial_time == START
    assert restored.settings.constraint_duals == [BALANCE]
    assert restored.template == original.template
    assert [g.name for g in restored.system.generators] == ["cheap", "peaker"]
    assert restored.is_empty


def test_record_is_tagged_and_versioned(tmp_path):
    """Test the binary record carries its kind and schema version"""
    build_problem(tmp_path)
    record = read_record(tmp_path / "ED.bin")

    assert record["kind"] == SERIALIZED_PROBLEM_KIND
    assert record["schema_version"] == 1
    assert record["problem_type"] == "opsim.problem:DecisionProblem"


def test_unknown_schema_version_rejected(tmp_path):
    """Test records from another schema version are refused"""
    build_problem(tmp_path)
    record = read_record(tmp_path / "ED.bin")
    record["schema_version"] = 99
    with open(tmp_path / "future.bin", "wb") as f:
        pickle.dump(record, f)

    with pytest.raises(DataFormatError):
        DecisionProblem.from_file(tmp_path / "future.bin")


def test_wrong_kind_rejected(tmp_path):
    """Test a pickle that is not a problem record is refused"""
    with open(tmp_path / "other.bin", "wb") as f:
        pickle.dump(["not", "a", "record"], f)
    (tmp_path / "empty.bin").write_bytes(b"")

    with pytest.raises(DataFormatError):
        read_record(tmp_path / "other.bin")
    with pytest.raises(DataFormatError):
        read_record(tmp_path / "empty.bin")


def test_missing_system_needs_explicit_system(tmp_path):
    """Test a record without a system file requires the caller to pass one"""
    build_problem(tmp_path, system_to_file=False)

    with pytest.raises(DataFormatError):
        DecisionProblem.from_file(tmp_path / "ED.bin")

    restored = DecisionProblem.from_file(tmp_path / "ED.bin", system=make_system())
    assert restored.settings.system_to_file is False
