"""
Configuration models for codeloop.

Defines dataclasses for the YAML configuration file.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class LLMBackend(Enum):
    """Supported LLM connection types."""

    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"


@dataclass
class LLMConfig:
    """Configuration for the LLM backend."""
    backend: LLMBackend = LLMBackend.OPENAI_COMPATIBLE
    base_url: str = "http://localhost:11434/v1"
    model: str = "qwen2.5-coder:7b"
    api_key: str = "dummy"
    temperature: float = 0.1
    max_tokens: Optional[int] = None
    timeout: float = 60.0
    retries: int = 3
    stream: bool = False


@dataclass
class WorkspaceSecurityConfig:
    """Paths the file tools may touch."""
    allowed_paths: list[str] = field(default_factory=lambda: ["."])
    forbidden_paths: list[str] = field(
        default_factory=lambda: [
            "**/.git/**",
            "**/.env",
            "**/.env.*",
            "**/node_modules/**",
            "**/__pycache__/**",
        ]
    )
    allow_outside_workspace: bool = False


@dataclass
class CommandSecurityConfig:
    """Shell command policy, carried in the context for tools that need it."""
    allowed_commands: list[str] = field(default_factory=list)
    forbidden_patterns: list[str] = field(
        default_factory=lambda: ["rm -rf", "sudo", "curl * | sh"]
    )
    max_execution_time: int = 30


@dataclass
class SecurityConfig:
    """Security policy snapshot handed to tools through the workflow context."""
    workspace: WorkspaceSecurityConfig = field(default_factory=WorkspaceSecurityConfig)
    commands: CommandSecurityConfig = field(default_factory=CommandSecurityConfig)


@dataclass
class EngineConfig:
    """Configuration for the orchestration engine."""
    max_tool_executions: int = 5
    enable_workflow_state: bool = True
    max_workflow_depth: int = 5
    results_keep_count: int = 20


@dataclass
class ContextSizeConfig:
    """Byte budgets for the context manager."""
    max_total_size: int = 8000
    max_result_size: int = 2000
    always_preserve_steps: int = 3
    compression_threshold: int = 6000
    min_context_size: int = 1000
    summary_render_threshold: int = 1000


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    enabled: bool = False
    public_key: str = ""
    secret_key: str = ""
    host: str = "https://cloud.langfuse.com"
    debug: bool = False

    @property
    def is_configured(self) -> bool:
        """Check if Langfuse is configured (both keys present)."""
        return bool(self.public_key and self.secret_key)


@dataclass
class AppConfig:
    """
    Application configuration container.

    Holds all configuration sections loaded from codeloop.yaml.
    """
    version: str = "1.0"
    llm: LLMConfig = field(default_factory=LLMConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    context: ContextSizeConfig = field(default_factory=ContextSizeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)

    @property
    def log_level(self) -> str:
        return self.logging.level
