"""
Pytest configuration and fixtures for codeloop tests.
"""

import copy
import json

import pytest

from codeloop.config_loader import reset_config_cache
from codeloop.models import LLMConfig, SecurityConfig
from codeloop.orchestration.workflow_state import WorkflowContext
from codeloop.tools import ToolRegistry, register_file_tools


class ScriptedLLM:
    """Stand-in for LLMClient that replays scripted responses.

    Each script item is an LLMResponse, or an exception to raise. Every
    call records a deep copy of the messages it was given.
    """

    def __init__(self, *responses):
        self.config = LLMConfig(model="test-model")
        self.responses = list(responses)
        self.calls: list[dict] = []
        self.connected = True

    def complete_with_tools(self, messages, tool_defs, options=None):
        self.calls.append(
            {
                "messages": copy.deepcopy(messages),
                "tool_defs": list(tool_defs),
                "options": dict(options or {}),
            }
        )
        if not self.responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def check_connection(self):
        return self.connected

    def close(self):
        pass


@pytest.fixture
def make_llm():
    """Factory for a ScriptedLLM."""
    return ScriptedLLM


@pytest.fixture
def workspace(tmp_path):
    """A small project tree."""
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "demo-app", "version": "1.2.3"}, indent=2)
    )
    (tmp_path / "tsconfig.json").write_text("{}")
    src = tmp_path / "src"
    src.mkdir()
    (src / "index.ts").write_text(
        "import { App } from './app';\n"
        "export class Server {}\n"
        "function start() {\n"
        "  // TODO: read port from env\n"
        "}\n"
    )
    (src / "util.py").write_text("def helper():\n    return 1\n")
    (tmp_path / ".env").write_text("SECRET=1\n")
    git = tmp_path / ".git"
    git.mkdir()
    (git / "config").write_text("[core]\n")
    return tmp_path


@pytest.fixture
def security():
    return SecurityConfig()


@pytest.fixture
def registry():
    reg = ToolRegistry()
    register_file_tools(reg)
    return reg


@pytest.fixture
def make_context(security):
    """Factory for a root WorkflowContext."""

    def _make(working_directory=".", registry=None, workflow_id="wf-test", max_depth=5):
        return WorkflowContext(
            working_directory=str(working_directory),
            security=security,
            registry=registry,
            query="test query",
            request_id="req-test",
            workflow_id=workflow_id,
            depth=0,
            max_depth=max_depth,
        )

    return _make


@pytest.fixture(autouse=True)
def reset_app_config():
    """Keep the config cache from leaking between tests."""
    reset_config_cache()
    yield
    reset_config_cache()
