"""pytest configuration and shared fixtures."""

import tempfile
import pytest
from pathlib import Path
from typing import Dict, Any

# Add src directory to Python path for testing
import sys
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

import yaml

from opt_engine.engine import OptimizationEngine
from opt_engine.storage.result_store import InMemoryResultStore
from opt_engine.utils.config_manager import ConfigManager

ENV_VARS = (
    "ENVIRONMENT",
    "OPT_ENGINE_LOG_LEVEL",
    "OPT_ENGINE_DEFAULT_ALGORITHM",
    "OPT_ENGINE_TIME_LIMIT",
    "OPT_ENGINE_STORAGE_BACKEND",
    "OPT_ENGINE_STORAGE_PATH",
)


@pytest.fixture
def temp_config_dir():
    """Create temporary configuration directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        config_path = Path(temp_dir)
        yield config_path


@pytest.fixture
def mock_config() -> Dict[str, Any]:
    """Configuration document used by the config_manager fixture."""
    return {
        "engine": {"name": "test-engine", "version": "0.1.0"},
        "logging": {
            "level": "DEBUG",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
        "solvers": {
            "default": "genetic",
            "time_limit": 30,
            "tolerance": 1.0e-6,
            "parameters": {
                "genetic": {"population_size": 40, "max_iterations": 80},
                "pareto": {"population_size": 40, "max_iterations": 60},
            },
        },
        "storage": {"backend": "memory", "path": "./results"},
        "validation": {
            "max_variables": 1000,
            "max_constraints": 1000,
            "require_nonnegative_weights": True,
        },
    }


@pytest.fixture
def config_manager(temp_config_dir, mock_config):
    """Create ConfigManager instance for testing."""
    config_file = temp_config_dir / "default.yaml"

    with open(config_file, "w") as f:
        yaml.dump(mock_config, f)

    return ConfigManager(str(temp_config_dir))


@pytest.fixture
def result_store():
    return InMemoryResultStore()


@pytest.fixture
def engine(config_manager, result_store):
    """Engine wired to the test configuration and an in-memory store."""
    return OptimizationEngine(config_manager, result_store)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment overrides out of configuration tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
