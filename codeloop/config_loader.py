"""
Configuration loader for codeloop.

Loads configuration from a YAML file with support for
environment variable interpolation. A missing file yields defaults.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .models import (
    AppConfig,
    CommandSecurityConfig,
    ContextSizeConfig,
    EngineConfig,
    LangfuseConfig,
    LLMBackend,
    LLMConfig,
    LoggingConfig,
    SecurityConfig,
    WorkspaceSecurityConfig,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CODELOOP_CONFIG"
DEFAULT_CONFIG_PATH = Path("codeloop.yaml")

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Singleton cache for app config
_app_config: Optional[AppConfig] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with env vars resolved
    """

    def replace_match(match: re.Match) -> str:
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(match.group(1), default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """Substitute environment variables throughout a parsed YAML tree."""
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _as_bool(value: Any, default: bool) -> bool:
    """YAML booleans pass through; interpolated strings are compared to 'true'."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse LLM configuration from dict."""
    backend_str = data.get("backend", LLMBackend.OPENAI_COMPATIBLE.value)
    try:
        backend = LLMBackend(backend_str)
    except ValueError:
        raise ValueError(f"Unknown LLM backend: {backend_str}")

    defaults = LLMConfig()
    max_tokens = data.get("max_tokens")
    return LLMConfig(
        backend=backend,
        base_url=data.get("base_url", defaults.base_url),
        model=data.get("model", defaults.model),
        api_key=data.get("api_key") or defaults.api_key,
        temperature=float(data.get("temperature", defaults.temperature)),
        max_tokens=int(max_tokens) if max_tokens not in (None, "") else None,
        timeout=float(data.get("timeout", defaults.timeout)),
        retries=int(data.get("retries", defaults.retries)),
        stream=_as_bool(data.get("stream"), defaults.stream),
    )


def _parse_security_config(data: dict) -> SecurityConfig:
    """Parse workspace and command security from dict."""
    workspace_data = data.get("workspace", {}) or {}
    commands_data = data.get("commands", {}) or {}
    workspace_defaults = WorkspaceSecurityConfig()
    command_defaults = CommandSecurityConfig()

    workspace = WorkspaceSecurityConfig(
        allowed_paths=list(workspace_data.get("allowed_paths", workspace_defaults.allowed_paths)),
        forbidden_paths=list(
            workspace_data.get("forbidden_paths", workspace_defaults.forbidden_paths)
        ),
        allow_outside_workspace=_as_bool(
            workspace_data.get("allow_outside_workspace"),
            workspace_defaults.allow_outside_workspace,
        ),
    )
    commands = CommandSecurityConfig(
        allowed_commands=list(commands_data.get("allowed_commands", command_defaults.allowed_commands)),
        forbidden_patterns=list(
            commands_data.get("forbidden_patterns", command_defaults.forbidden_patterns)
        ),
        max_execution_time=int(
            commands_data.get("max_execution_time", command_defaults.max_execution_time)
        ),
    )
    return SecurityConfig(workspace=workspace, commands=commands)


def _parse_engine_config(data: dict) -> EngineConfig:
    """Parse engine configuration from dict."""
    defaults = EngineConfig()
    return EngineConfig(
        max_tool_executions=int(data.get("max_tool_executions", defaults.max_tool_executions)),
        enable_workflow_state=_as_bool(
            data.get("enable_workflow_state"), defaults.enable_workflow_state
        ),
        max_workflow_depth=int(data.get("max_workflow_depth", defaults.max_workflow_depth)),
        results_keep_count=int(data.get("results_keep_count", defaults.results_keep_count)),
    )


def _parse_context_config(data: dict) -> ContextSizeConfig:
    """Parse context budgets; unknown keys are ignored."""
    defaults = ContextSizeConfig()
    return ContextSizeConfig(
        **{
            name: int(data.get(name, getattr(defaults, name)))
            for name in defaults.__dataclass_fields__
        }
    )


def _parse_logging_config(data: dict) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(level=str(data.get("level", "INFO")).upper())


def _parse_langfuse_config(data: dict) -> LangfuseConfig:
    """Parse Langfuse configuration; enabled defaults to having both keys."""
    public_key = data.get("public_key", "")
    secret_key = data.get("secret_key", "")
    return LangfuseConfig(
        enabled=_as_bool(data.get("enabled"), bool(public_key and secret_key)),
        public_key=public_key,
        secret_key=secret_key,
        host=data.get("host", "https://cloud.langfuse.com"),
        debug=_as_bool(data.get("debug"), False),
    )


def validate_app_config(config: AppConfig) -> list[str]:
    """
    Validate an application configuration.

    Args:
        config: Configuration to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.llm.base_url:
        errors.append("llm.base_url is empty")
    if not config.llm.model:
        errors.append("llm.model is empty")
    if config.llm.timeout <= 0:
        errors.append("llm.timeout must be positive")
    if config.llm.retries < 0:
        errors.append("llm.retries must not be negative")
    if config.engine.max_tool_executions < 1:
        errors.append("engine.max_tool_executions must be at least 1")
    if config.engine.max_workflow_depth < 1:
        errors.append("engine.max_workflow_depth must be at least 1")
    if config.context.compression_threshold > config.context.max_total_size:
        errors.append("context.compression_threshold exceeds context.max_total_size")
    if config.context.always_preserve_steps < 0:
        errors.append("context.always_preserve_steps must not be negative")
    if not isinstance(logging.getLevelName(config.logging.level), int):
        errors.append(f"logging.level '{config.logging.level}' is not a logging level")
    if config.langfuse.enabled and not config.langfuse.is_configured:
        errors.append("langfuse.enabled is set but public_key/secret_key are missing")

    return errors


def load_app_config(path: Optional[str] = None, reload: bool = False) -> AppConfig:
    """
    Load application configuration from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified. A ``.env`` file in the working
    directory is loaded first so its variables can be interpolated.

    Args:
        path: Path to the YAML configuration file. If None, uses the
              CODELOOP_CONFIG env var or ./codeloop.yaml.
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AppConfig; defaults when the file does not exist

    Raises:
        ValueError: If the config is invalid
    """
    global _app_config

    if _app_config is not None and not reload:
        return _app_config

    load_dotenv()

    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR, str(DEFAULT_CONFIG_PATH))

    config_path = Path(path)

    if not config_path.exists():
        logger.info(f"No configuration file at {config_path}, using defaults")
        raw_config: dict = {}
    else:
        logger.info(f"Loading configuration from {config_path}")
        with open(config_path, "r") as f:
            raw_config = yaml.safe_load(f) or {}
        if not isinstance(raw_config, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")

    raw_config = _substitute_env_vars_recursive(raw_config)

    app_config = AppConfig(
        version=str(raw_config.get("version", "1.0")),
        llm=_parse_llm_config(raw_config.get("llm") or {}),
        security=_parse_security_config(raw_config.get("security") or {}),
        engine=_parse_engine_config(raw_config.get("engine") or {}),
        context=_parse_context_config(raw_config.get("context") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
        langfuse=_parse_langfuse_config(raw_config.get("langfuse") or {}),
    )

    for error in validate_app_config(app_config):
        logger.warning(f"Config validation warning: {error}")

    _app_config = app_config
    logger.debug(
        f"Configuration loaded: version={app_config.version}, "
        f"backend={app_config.llm.backend.value}, model={app_config.llm.model}"
    )
    return app_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _app_config
    _app_config = None
    logger.debug("Configuration cache reset")
