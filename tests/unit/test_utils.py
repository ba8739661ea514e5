"""Tests for utility modules."""

import logging
import tempfile
from pathlib import Path

import pytest
import yaml

from opt_engine.exceptions import ProblemValidationError
from opt_engine.models.expressions import var
from opt_engine.models.problem import Objective, Problem, Variable, VariableKind
from opt_engine.utils.config_manager import ConfigManager
from opt_engine.utils.logger import get_logger, setup_logging
from opt_engine.utils.problem_validator import ProblemValidator


class TestConfigManager:
    """Test cases for ConfigManager."""

    def test_loads_default_yaml_from_directory(self, config_manager):
        """Test loading default.yaml from a configuration directory."""
        config = config_manager.get_config()

        assert config.engine.name == "test-engine"
        assert config.logging.level == "DEBUG"
        assert config.solvers.default == "genetic"
        assert config.solvers.time_limit == 30
        assert config.storage.backend == "memory"

    def test_file_path_resolves_to_its_directory(self, config_manager):
        """Test that a path to a file loads the directory holding it."""
        manager = ConfigManager(str(config_manager.config_dir / "default.yaml"))
        assert manager.config_dir == config_manager.config_dir
        assert manager.config_file == "default.yaml"
        assert manager.get_config().engine.name == "test-engine"

    def test_named_file_is_loaded(self, config_manager, mock_config):
        """Test that a file other than default.yaml is the one actually read."""
        custom = dict(mock_config, engine={"name": "custom-engine", "version": "0.2.0"})
        custom["solvers"] = dict(mock_config["solvers"], time_limit=7)
        path = config_manager.config_dir / "custom.yaml"
        with open(path, "w") as f:
            yaml.dump(custom, f)

        manager = ConfigManager(str(path))

        assert manager.config_file == "custom.yaml"
        assert manager.get_config().engine.name == "custom-engine"
        assert manager.get("solvers.time_limit") == 7

    def test_missing_named_file(self, temp_config_dir):
        """Test that a named file that vanished is reported, not replaced by defaults."""
        (temp_config_dir / "default.yaml").write_text("engine: {name: fallback}\n", encoding="utf-8")
        named = temp_config_dir / "custom.yaml"
        named.write_text("engine: {name: custom}\n", encoding="utf-8")
        manager = ConfigManager(str(named))
        named.unlink()

        with pytest.raises(FileNotFoundError, match="custom.yaml"):
            manager._load_config()

    def test_packaged_defaults(self):
        """Test that the packaged configuration loads without arguments."""
        manager = ConfigManager()
        config = manager.get_config()

        assert config.solvers.default == "genetic"
        assert config.solvers.time_limit == 300
        assert "backtracking" in config.solvers.parameters
        assert config.storage.backend == "memory"

    def test_get_with_dot_notation(self, config_manager):
        """Test nested lookups and defaults."""
        assert config_manager.get("logging.level") == "DEBUG"
        assert config_manager.get("solvers.parameters.genetic.population_size") == 40
        assert config_manager.get("solvers.missing", "fallback") == "fallback"
        assert config_manager.get("nothing.here") is None

    def test_solver_config(self, config_manager):
        """Test building the constructor config of one solver."""
        config = config_manager.solver_config("genetic")

        assert config["time_limit"] == 30
        assert config["tolerance"] == pytest.approx(1e-6)
        assert config["parameters"] == {"population_size": 40, "max_iterations": 80}
        assert config_manager.solver_config("routing")["parameters"] == {}

    def test_environment_variable_overrides(self, config_manager, monkeypatch):
        """Test OPT_ENGINE_* environment overrides."""
        monkeypatch.setenv("OPT_ENGINE_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("OPT_ENGINE_TIME_LIMIT", "12.5")
        monkeypatch.setenv("OPT_ENGINE_DEFAULT_ALGORITHM", "pareto")
        monkeypatch.setenv("OPT_ENGINE_STORAGE_BACKEND", "none")

        config = ConfigManager(str(config_manager.config_dir)).get_config()

        assert config.logging.level == "WARNING"
        assert config.solvers.time_limit == 12.5
        assert config.solvers.default == "pareto"
        assert config.storage.backend == "none"

    def test_non_numeric_time_limit_is_ignored(self, config_manager, monkeypatch):
        """Test that a malformed time limit override keeps the file value."""
        monkeypatch.setenv("OPT_ENGINE_TIME_LIMIT", "soon")
        config = ConfigManager(str(config_manager.config_dir)).get_config()
        assert config.solvers.time_limit == 30

    def test_environment_file_is_merged(self, config_manager, monkeypatch):
        """Test that <ENVIRONMENT>.yaml is merged over the defaults."""
        override = {"solvers": {"time_limit": 5, "parameters": {"genetic": {"population_size": 10}}}}
        with open(config_manager.config_dir / "production.yaml", "w") as f:
            yaml.dump(override, f)
        monkeypatch.setenv("ENVIRONMENT", "production")

        manager = ConfigManager(str(config_manager.config_dir))

        assert manager.get("solvers.time_limit") == 5
        assert manager.get("solvers.parameters.genetic.population_size") == 10
        # untouched keys survive the merge
        assert manager.get("solvers.parameters.genetic.max_iterations") == 80
        assert manager.get("solvers.default") == "genetic"

    def test_missing_environment_file_is_ignored(self, config_manager, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        manager = ConfigManager(str(config_manager.config_dir))
        assert manager.get("solvers.time_limit") == 30

    def test_missing_default_config(self):
        """Test ConfigManager when default config is missing."""
        with (
            tempfile.TemporaryDirectory() as temp_dir,
            pytest.raises(FileNotFoundError),
        ):
            ConfigManager(str(temp_dir))

    def test_invalid_yaml(self, temp_config_dir):
        """Test that broken YAML is reported as ValueError."""
        (temp_config_dir / "default.yaml").write_text("solvers: [unclosed\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid YAML"):
            ConfigManager(str(temp_config_dir))


class TestLogger:
    """Test cases for logging utilities."""

    def test_get_logger(self):
        """Test getting logger instance."""
        logger = get_logger("test_logger")
        assert logger.name == "test_logger"

    def test_setup_logging_uses_configured_level(self, config_manager):
        """Test that setup_logging applies the configured root level."""
        root = logging.getLogger()
        previous_level, previous_handlers = root.level, list(root.handlers)
        try:
            setup_logging(config_manager)
            assert root.level == logging.DEBUG
            assert logging.getLogger("pulp").level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
            for handler in previous_handlers:
                root.addHandler(handler)
            root.setLevel(previous_level)


class TestProblemValidator:
    """Test cases for ProblemValidator."""

    @pytest.fixture
    def validator(self):
        return ProblemValidator()

    def _problem(self, **overrides):
        data = {
            "name": "p",
            "variables": [Variable(name="x", lower_bound=0, upper_bound=1)],
            "objectives": [Objective(name="f", expression=var("x"))],
        }
        data.update(overrides)
        return Problem(**data)

    def test_valid_problem(self, validator):
        assert validator.collect_issues(self._problem()) == []
        validator.validate(self._problem())

    def test_missing_objectives(self, validator):
        issues = validator.collect_issues(self._problem(objectives=[]))
        assert issues == ["problem has no objectives"]

    def test_duplicate_names(self, validator):
        problem = self._problem(
            variables=[Variable(name="x"), Variable(name="x")],
            objectives=[
                Objective(name="f", expression=var("x")),
                Objective(name="f", expression=var("x")),
            ],
        )
        issues = validator.collect_issues(problem)
        assert "duplicate variable name 'x'" in issues
        assert "duplicate objective name 'f'" in issues

    def test_unknown_variable_reference(self, validator):
        problem = self._problem(objectives=[Objective(name="f", expression=var("x") + var("y"))])
        issues = validator.collect_issues(problem)
        assert issues == ["objective 'f' references unknown variable 'y'"]

    def test_closures_are_not_inspected(self, validator):
        problem = self._problem(objectives=[Objective(name="f", function=lambda v: v["zzz"])])
        assert validator.collect_issues(problem) == []

    def test_negative_weight(self, validator):
        problem = self._problem(objectives=[Objective(name="f", weight=-1.0, expression=var("x"))])
        assert validator.collect_issues(problem) == ["objective 'f' has negative weight -1.0"]
        lenient = ProblemValidator(require_nonnegative_weights=False)
        assert lenient.collect_issues(problem) == []

    def test_size_limits(self):
        validator = ProblemValidator(max_variables=1, max_constraints=0)
        problem = self._problem(
            variables=[Variable(name="x"), Variable(name="y", kind=VariableKind.INTEGER)],
        )
        issues = validator.collect_issues(problem)
        assert any(issue.startswith("too many variables: 2") for issue in issues)

    def test_integer_domain_without_integers(self, validator):
        problem = self._problem(
            variables=[Variable(name="x", kind=VariableKind.INTEGER, lower_bound=0.2, upper_bound=0.8)]
        )
        assert "integer variable 'x' has an empty domain" in validator.collect_issues(problem)

    def test_validate_raises_with_all_issues(self, validator):
        problem = self._problem(objectives=[], variables=[Variable(name="x"), Variable(name="x")])
        with pytest.raises(ProblemValidationError) as excinfo:
            validator.validate(problem)
        assert len(excinfo.value.issues) == 2
        assert "problem has no objectives" in str(excinfo.value)
