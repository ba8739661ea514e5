"""Configuration data models."""

from typing import Any, Dict

from pydantic import BaseModel, Field


class EngineInfoConfig(BaseModel):
    """Engine identification."""
    name: str = "opt-engine"
    version: str = "0.1.0"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SolverConfig(BaseModel):
    """Solver defaults."""
    default: str = "genetic"
    time_limit: float = Field(300.0, description="Default time limit for a solve in seconds")
    tolerance: float = Field(1e-6, description="Default numeric tolerance")
    parameters: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-algorithm parameter overrides"
    )


class StorageConfig(BaseModel):
    """Result store configuration."""
    backend: str = Field("memory", description="memory, file or none")
    path: str = "./results"


class ValidationConfig(BaseModel):
    """Input validation configuration."""
    max_variables: int = 100000
    max_constraints: int = 100000
    require_nonnegative_weights: bool = True


class Config(BaseModel):
    """Main configuration container."""
    engine: EngineInfoConfig = Field(default_factory=EngineInfoConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    solvers: SolverConfig = Field(default_factory=SolverConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        return cls.model_validate(data)
