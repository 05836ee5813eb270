"""
Tool definitions and prompts for the orchestration engine.

Converts ToolRegistry entries into OpenAI-style JSON tool definitions and
builds the system prompt and the forced final-answer instruction.
"""

import logging
from typing import Optional

from ..tools.registry import ToolDefinition

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_TEMPLATE = """You are a coding assistant working inside a local project workspace.
Working directory: {working_directory}

You can call the following tools:
{tool_lines}

Guidelines:
- Use tools to inspect files before answering questions about the code.
- Paths are relative to the working directory.
- Call tools only when you need more information. When you have enough,
  answer directly without calling any tool.
- If a tool fails, read the error and try a different approach."""

FINAL_ANSWER_TEMPLATE = (
    "Based on the tool results above, please provide a direct and complete "
    'answer to the original question: "{query}"\n\n'
    "Do not call any more tools. Answer from the information already gathered."
)


def build_tool_definitions(
    tools: list[ToolDefinition],
    exclude_tools: Optional[set[str]] = None,
) -> list[dict]:
    """
    Build OpenAI function-calling tool definitions from registry entries.

    Args:
        tools: Registered tools (from ``ToolRegistry.list_tools``)
        exclude_tools: Full tool names to leave out

    Returns:
        List of OpenAI-format tool definitions, named by full tool name.
    """
    exclude = exclude_tools or set()
    definitions: list[dict] = []

    for tool in tools:
        if tool.full_name in exclude:
            logger.debug("Excluding tool '%s'", tool.full_name)
            continue
        parameters = tool.parameters or {"type": "object", "properties": {}}
        definitions.append(
            {
                "type": "function",
                "function": {
                    "name": tool.full_name,
                    "description": tool.description,
                    "parameters": parameters,
                },
            }
        )

    return definitions


def build_system_prompt(tools: list[ToolDefinition], working_directory: str) -> str:
    """System message enumerating the available tools."""
    tool_lines = "\n".join(f"- {t.full_name}: {t.description}" for t in tools)
    return SYSTEM_PROMPT_TEMPLATE.format(
        working_directory=working_directory,
        tool_lines=tool_lines or "- (no tools available)",
    )


def build_final_answer_prompt(query: str, memory_digest: str = "") -> str:
    """Instruction for the forced last call once the tool budget is spent."""
    prompt = FINAL_ANSWER_TEMPLATE.format(query=query)
    if memory_digest:
        prompt += f"\n\nKey facts gathered so far:\n{memory_digest}"
    return prompt
