"""Config loading, validation, and profile overlays for ``orchestrator.toml``."""

from capability_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from capability_orchestrator.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    OrchestratorConfig,
    assert_valid_config,
    default_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "OrchestratorConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "validate_config",
]
