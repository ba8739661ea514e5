"""Tests for result store adapters."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from opt_engine.exceptions import StorageError
from opt_engine.models.config import StorageConfig
from opt_engine.models.solution import (
    AlternativeSolution,
    ConstraintSensitivity,
    ConvergencePoint,
    OptimizationSolution,
    SensitivityAnalysis,
    SolutionMetadata,
    SolutionStatus,
)
from opt_engine.storage.result_store import (
    FileResultStore,
    InMemoryResultStore,
    create_result_store,
)


def make_solution(problem_id="p1", created_at=None, value=1.0):
    data = dict(
        problem_id=problem_id,
        status=SolutionStatus.FEASIBLE,
        objective_values={"f": value},
        variable_values={"x": value, "colour": "blue"},
        metadata=SolutionMetadata(
            algorithm="genetic",
            iterations=3,
            runtime=0.5,
            convergence_history=[
                ConvergencePoint(
                    iteration=i, objective_value=value + i, constraint_violation=0.0, elapsed=0.1 * i
                )
                for i in range(3)
            ],
            algorithm_specific={"seed": 42},
        ),
        alternatives=[
            AlternativeSolution(
                rank=1, variable_values={"x": value}, objective_values={"f": value},
                crowding_distance=math.inf,
            )
        ],
        sensitivity=SensitivityAnalysis(
            constraint_sensitivity=[
                ConstraintSensitivity(
                    constraint_id="c", shadow_price=0.0, slack=1.0,
                    allowable_increase=math.inf, allowable_decrease=1.0,
                )
            ]
        ),
    )
    if created_at is not None:
        data["created_at"] = created_at
    return OptimizationSolution(**data)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryResultStore()
    return FileResultStore(tmp_path / "results")


class TestResultStore:
    """Behaviour shared by every backend."""

    def test_round_trip(self, store):
        solution = make_solution()
        store.save(solution)
        loaded = store.load("p1")

        assert loaded == solution
        assert loaded.alternatives[0].crowding_distance == math.inf
        assert loaded.sensitivity.constraint_sensitivity[0].allowable_increase == math.inf
        assert loaded.metadata.convergence_history == solution.metadata.convergence_history

    def test_unknown_problem(self, store):
        assert store.load("missing") is None

    def test_latest_solution_wins(self, store):
        now = datetime.now(timezone.utc)
        newer = make_solution(created_at=now, value=2.0)
        older = make_solution(created_at=now - timedelta(minutes=5), value=1.0)
        store.save(newer)
        store.save(older)

        assert store.load("p1").solution_id == newer.solution_id

    def test_problems_are_kept_apart(self, store):
        store.save(make_solution("p1", value=1.0))
        store.save(make_solution("p2", value=2.0))

        assert store.load("p1").objective_values == {"f": 1.0}
        assert store.load("p2").objective_values == {"f": 2.0}


class TestInMemoryResultStore:
    def test_len_counts_every_solution(self):
        store = InMemoryResultStore()
        store.save(make_solution("p1"))
        store.save(make_solution("p1"))
        store.save(make_solution("p2"))
        assert len(store) == 3


class TestFileResultStore:
    def test_one_document_per_solution(self, tmp_path):
        store = FileResultStore(tmp_path)
        solution = make_solution()
        store.save(solution)

        assert (tmp_path / "p1" / f"{solution.solution_id}.json").is_file()

    def test_corrupt_record(self, tmp_path):
        store = FileResultStore(tmp_path)
        store.save(make_solution())
        (tmp_path / "p1" / "broken.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError, match="Corrupt solution record"):
            store.load("p1")

    def test_unwritable_path(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = FileResultStore(blocker)

        with pytest.raises(StorageError, match="Failed to write"):
            store.save(make_solution())


class TestCreateResultStore:
    def test_memory(self):
        assert isinstance(create_result_store(StorageConfig(backend="memory")), InMemoryResultStore)

    def test_file(self, tmp_path):
        store = create_result_store(StorageConfig(backend="FILE", path=str(tmp_path)))
        assert isinstance(store, FileResultStore)
        assert store.path == tmp_path

    def test_disabled(self):
        assert create_result_store(StorageConfig(backend="none")) is None

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_result_store(StorageConfig(backend="redis"))
