"""
codeloop - a tool-calling coding assistant for local workspaces

This package provides:
- LLM client over OpenAI-compatible servers and Ollama
- Namespaced tool registry with workspace file tools
- Orchestration engine with workflow state and context management
- Interactive CLI
"""

from .errors import AgentError
from .llm_call import LLMClient
from .orchestration import Engine, EngineOptions, EngineResponse

__all__ = [
    "AgentError",
    "Engine",
    "EngineOptions",
    "EngineResponse",
    "LLMClient",
]

__version__ = "0.1.0"
