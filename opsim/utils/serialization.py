"""
Problem serialization
A built problem is written as a tagged, versioned record {schema_version, kind, template,
system_file, settings, problem_type}. The system itself is written as JSON next to it.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import importlib
import logging
import pickle

from opsim.constants import SERIALIZATION_SCHEMA_VERSION, SERIALIZED_PROBLEM_KIND
from opsim.exceptions import DataFormatError
from opsim.models import ProblemSettings, ProblemTemplate
from opsim.system import System, make_system_filename

logger = logging.getLogger(__name__)


def _type_path(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def _resolve_type(path: str) -> type:
    module_name, _, qualname = path.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise DataFormatError(f"Cannot resolve problem type {path}: {e}") from e
    return obj


def make_record(
    problem_type: type,
    template: ProblemTemplate,
    settings: ProblemSettings,
    system_file: Optional[str],
) -> Dict[str, Any]:
    return {
        "schema_version": SERIALIZATION_SCHEMA_VERSION,
        "kind": SERIALIZED_PROBLEM_KIND,
        "template": template.model_dump(mode="json"),
        "system_file": system_file,
        "settings": settings.model_dump(mode="json"),
        "problem_type": _type_path(problem_type),
    }


def serialize_problem(problem: Any, output_dir: Union[str, Path]) -> Path:
    """
    Write `<name>.bin` (and the system JSON when system_to_file is set)

    Returns:
        Path of the binary file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    settings = problem.get_optimization_container().settings_copy

    system_file = None
    if settings.system_to_file:
        system_path = output_dir / make_system_filename(problem.system)
        # The system does not change between builds, write it once
        if not system_path.exists():
            problem.system.to_json(system_path)
        system_file = str(system_path)

    record = make_record(type(problem), problem.template, settings, system_file)
    bin_path = output_dir / f"{problem.name or 'OperationProblem'}.bin"
    with open(bin_path, "wb") as f:
        pickle.dump(record, f)
    logger.info(f"Serialized {SERIALIZED_PROBLEM_KIND} to {bin_path}")
    return bin_path


def read_record(filename: Union[str, Path]) -> Dict[str, Any]:
    """
    Load and validate a serialized record

    Raises:
        DataFormatError: If the file is not a problem record of a supported version
    """
    try:
        with open(filename, "rb") as f:
            record = pickle.load(f)
    except (pickle.UnpicklingError, EOFError, ValueError) as e:
        raise DataFormatError(f"{filename} is not a serialized problem: {e}") from e

    if not isinstance(record, dict) or record.get("kind") != SERIALIZED_PROBLEM_KIND:
        raise DataFormatError(f"Deserialized object has incorrect type {type(record).__name__}")
    version = record.get("schema_version")
    if version != SERIALIZATION_SCHEMA_VERSION:
        raise DataFormatError(
            f"Unsupported schema version {version}, expected {SERIALIZATION_SCHEMA_VERSION}",
            details={"schema_version": version},
        )
    return record


def deserialize_problem(
    filename: Union[str, Path], system: Optional[System] = None, **kwargs: Any
) -> Any:
    """
    Rebuild a problem from its serialized record

    Solver, builder and time series source are not serialized; pass them again
    through kwargs if the defaults are not wanted.

    Raises:
        DataFormatError: On a bad record, or when no system was serialized or supplied
    """
    from opsim.problem import DecisionProblem

    record = read_record(filename)
    problem_type = _resolve_type(record["problem_type"])
    if not (isinstance(problem_type, type) and issubclass(problem_type, DecisionProblem)):
        raise DataFormatError(f"{record['problem_type']} is not a DecisionProblem type")

    settings = ProblemSettings.model_validate(record["settings"])
    template = ProblemTemplate.model_validate(record["template"])
    if system is None:
        system_file = record["system_file"]
        if system_file is None:
            raise DataFormatError(
                "Operations problem system was not serialized and a system has not been specified"
            )
        if not Path(system_file).exists():
            raise DataFormatError(f"System file {system_file} does not exist")
        system = System.from_json(system_file)

    name = Path(filename).stem
    return problem_type(template, system, settings=settings, name=name, **kwargs)
