"""Result store adapters for persisting solutions."""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..exceptions import StorageError
from ..models.config import StorageConfig
from ..models.solution import OptimizationSolution
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ResultStore(ABC):
    """Persistence collaborator of the engine.

    Solutions are stored as JSON documents produced by pydantic, so every
    field (including convergence history, alternatives and sensitivity)
    survives a round trip.
    """

    @abstractmethod
    def save(self, solution: OptimizationSolution) -> None:
        """Persist a solution.

        Raises:
            StorageError: If the solution cannot be written
        """

    @abstractmethod
    def load(self, problem_id: str) -> Optional[OptimizationSolution]:
        """Return the most recently created solution for a problem, if any."""

    @staticmethod
    def _decode(document: str, source: str) -> OptimizationSolution:
        try:
            return OptimizationSolution.model_validate_json(document)
        except ValidationError as e:
            raise StorageError(f"Corrupt solution record in {source}: {e}") from e


class InMemoryResultStore(ResultStore):
    """Thread-safe store keeping serialized solutions in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, list[str]] = defaultdict(list)

    def save(self, solution: OptimizationSolution) -> None:
        document = solution.model_dump_json()
        with self._lock:
            self._records[solution.problem_id].append(document)
        logger.debug(f"Stored solution {solution.solution_id} for problem {solution.problem_id}")

    def load(self, problem_id: str) -> Optional[OptimizationSolution]:
        with self._lock:
            documents = list(self._records.get(problem_id, ()))
        if not documents:
            return None
        solutions = [self._decode(document, "memory") for document in documents]
        return max(solutions, key=lambda solution: solution.created_at)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(documents) for documents in self._records.values())


class FileResultStore(ResultStore):
    """Stores one JSON document per solution under ``<path>/<problem_id>/``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _problem_dir(self, problem_id: str) -> Path:
        return self.path / problem_id

    def save(self, solution: OptimizationSolution) -> None:
        directory = self._problem_dir(solution.problem_id)
        target = directory / f"{solution.solution_id}.json"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            target.write_text(solution.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write {target}: {e}") from e
        logger.debug(f"Stored solution {solution.solution_id} at {target}")

    def load(self, problem_id: str) -> Optional[OptimizationSolution]:
        directory = self._problem_dir(problem_id)
        if not directory.is_dir():
            return None
        solutions = []
        for record in sorted(directory.glob("*.json")):
            try:
                document = record.read_text(encoding="utf-8")
            except OSError as e:
                raise StorageError(f"Failed to read {record}: {e}") from e
            solutions.append(self._decode(document, str(record)))
        if not solutions:
            return None
        return max(solutions, key=lambda solution: solution.created_at)


def create_result_store(config: StorageConfig) -> Optional[ResultStore]:
    """Build the store named by the storage configuration.

    Args:
        config: Storage section of the engine configuration

    Returns:
        Result store, or None when persistence is disabled

    Raises:
        ValueError: If the backend is unknown
    """
    backend = config.backend.lower()
    if backend == "memory":
        return InMemoryResultStore()
    if backend == "file":
        return FileResultStore(config.path)
    if backend == "none":
        return None
    raise ValueError(f"Unknown storage backend: {config.backend}. Available: memory, file, none")
