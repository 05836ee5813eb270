#!/usr/bin/env python3
"""
codeloop Interactive CLI

Ask questions about a local code workspace. One-shot mode answers a single
query; with no query a REPL is started.
"""

import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import Optional

from .config_loader import load_app_config
from .llm_call import LLMClient
from .models import AppConfig
from .orchestration import ContextManager, Engine, EngineOptions, EngineResponse
from .tools import ToolRegistry, register_file_tools
from .tracing import TracingClient

# Global shutdown flag for signal handling
_shutdown_requested = threading.Event()

logger = logging.getLogger(__name__)


def _signal_handler(signum: int, frame) -> None:
    """Handle SIGINT for graceful shutdown."""
    if _shutdown_requested.is_set():
        logger.debug("Force shutdown requested")
        sys.exit(1)
    logger.debug("Shutdown requested")
    _shutdown_requested.set()
    print("\n\nShutting down... (press Ctrl+C again to force)")


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure logging; verbose forces DEBUG."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def build_engine(
    app_config: AppConfig,
    working_directory: str,
    max_tools: Optional[int] = None,
    debug: bool = False,
    llm_client: Optional[LLMClient] = None,
    tracing_client: Optional[TracingClient] = None,
) -> Engine:
    """
    Wire an engine from application configuration.

    Args:
        app_config: Loaded configuration
        working_directory: Workspace root for file tools
        max_tools: Override for engine.max_tool_executions
        debug: Verbose per-step logging in the engine
        llm_client: Pre-built client (defaults to one from app_config.llm)
        tracing_client: Pre-built tracing client (defaults to one from
            app_config.langfuse)

    Returns:
        A ready Engine with the file tools registered
    """
    registry = ToolRegistry()
    register_file_tools(registry)

    engine_config = app_config.engine
    options = EngineOptions(
        working_directory=working_directory,
        enable_workflow_state=engine_config.enable_workflow_state,
        max_workflow_depth=engine_config.max_workflow_depth,
        max_tool_executions=max_tools if max_tools is not None else engine_config.max_tool_executions,
        enable_streaming=app_config.llm.stream,
        debug=debug,
        results_keep_count=engine_config.results_keep_count,
    )
    if tracing_client is None:
        tracing_client = TracingClient.from_config(app_config.langfuse)

    return Engine(
        llm_client=llm_client or LLMClient(app_config.llm),
        registry=registry,
        security=app_config.security,
        options=options,
        context_manager=ContextManager(app_config.context),
        tracing_client=tracing_client,
    )


def print_banner() -> None:
    """Print the welcome banner."""
    banner = """
╔════════════════════════════════════════════════════════════════╗
║                      codeloop Interactive                       ║
║                                                                 ║
║  Ask questions about the code in your workspace                 ║
╚════════════════════════════════════════════════════════════════╝

Available commands:
  /help     - Show this help message
  /trace    - Show the steps of the last query
  /tools    - List available tools
  /status   - Check the LLM backend and tool stats
  /verbose  - Toggle verbose mode
  /quit     - Exit the CLI

Type your questions or tasks below.
"""
    print(banner)


def print_tools(engine: Engine) -> None:
    """Print registered tools."""
    print("\nAvailable Tools:")
    print("─" * 64)
    for i, tool in enumerate(engine.get_available_tools(), start=1):
        print(f"{i}. {tool['full_name'].ljust(16)} - {tool['description']}")
    print()


def print_status(engine: Engine) -> None:
    """Print backend health and per-tool stats."""
    status = engine.get_status()
    print("\nEngine Status:")
    print("─" * 64)
    print(f"Healthy:       {'yes' if status.healthy else 'no'}")
    print(f"Backend:       {'connected' if status.backend_connected else 'unreachable'}")
    print(f"Model:         {status.model}")
    print(f"Tools:         {status.tools_registered}")
    for name, stats in status.tool_stats.items():
        print(
            f"  {name.ljust(16)} {stats['executions']} runs, "
            f"{stats['failures']} failed, {stats['average_duration']:.0f}ms avg"
        )
    for error in status.errors:
        print(f"Error: {error}")
    print()


def print_trace(response: Optional[EngineResponse]) -> None:
    """Print the workflow steps of the last query."""
    if response is None:
        print("\nNo trace available. Run a query first.\n")
        return

    print("\n" + "═" * 70)
    print(f"WORKFLOW TRACE [{response.request_id}]")
    print("═" * 70)

    steps = response.workflow.steps if response.workflow else []
    if steps:
        for number, step in enumerate(steps, start=1):
            print(f"\n┌─ Step {number}: {step.tool_name}  [{step.status.value}]")
            if step.arguments:
                print(f"│  Input: {json.dumps(step.arguments, default=str)}")
            if step.error:
                print(f"│  Error: {step.error}")
            print("└" + "─" * 68)
    else:
        for number, result in enumerate(response.tool_results, start=1):
            status = "ok" if result.success else f"failed: {result.error}"
            print(f"\n  Step {number}: {result.full_name} ({status})")

    for error in response.errors:
        print(f"\n  Error [{error.code}]: {error.message}")
    print(f"\n  Completed in {response.processing_time:.0f}ms\n")


class InteractiveCLI:
    """Interactive REPL over one engine."""

    def __init__(self, engine: Engine, verbose: bool = False):
        self.engine = engine
        self.verbose = verbose
        self.last_response: Optional[EngineResponse] = None

    def toggle_verbose(self) -> None:
        """Toggle verbose mode."""
        self.verbose = not self.verbose
        logging.getLogger().setLevel(logging.DEBUG if self.verbose else logging.INFO)
        print(f"\nVerbose mode: {'ON' if self.verbose else 'OFF'}\n")

    def process_query(self, query: str) -> bool:
        """Process a user query.

        Returns:
            True if should continue, False if shutdown requested
        """
        print("\n" + "─" * 70)
        print("Processing query...")
        print("─" * 70 + "\n")

        response = self.engine.process_query(query)
        self.last_response = response

        if _shutdown_requested.is_set():
            print("\n\nQuery completed, shutting down.\n")
            return False

        if not response.complete:
            for error in response.errors:
                print(f"\nError [{error.code}]: {error.message}\n")
            return True

        print("\n" + "═" * 70)
        print("ANSWER")
        print("═" * 70)
        print(response.response_text)
        print("═" * 70 + "\n")

        tool_count = len(response.tools_executed)
        if tool_count:
            print(f"(Used {tool_count} tool call{'s' if tool_count != 1 else ''})")
            print("Use /trace to see the workflow steps.\n")
        return True

    def handle_command(self, command: str) -> bool:
        """Run a slash command. Returns False to exit."""
        command = command.lower()
        if command in ("/quit", "/exit", "/q"):
            print("\nGoodbye!\n")
            return False
        elif command in ("/help", "/h", "/?"):
            print_banner()
        elif command == "/trace":
            print_trace(self.last_response)
        elif command == "/tools":
            print_tools(self.engine)
        elif command == "/status":
            print_status(self.engine)
        elif command == "/verbose":
            self.toggle_verbose()
        else:
            print(f"\nUnknown command: {command}")
            print("Type /help for available commands.\n")
        return True

    def run(self) -> None:
        """Run the interactive CLI loop."""
        print_banner()

        while not _shutdown_requested.is_set():
            try:
                user_input = input(">>> ").strip()

                if _shutdown_requested.is_set():
                    break
                if not user_input:
                    continue

                if user_input.startswith("/"):
                    if not self.handle_command(user_input):
                        break
                elif not self.process_query(user_input):
                    break

            except KeyboardInterrupt:
                if _shutdown_requested.is_set():
                    print("\n")
                    break
                print("\n\nType /quit to exit.\n")
            except EOFError:
                print("\nGoodbye!\n")
                break


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="codeloop: a tool-calling coding assistant for local workspaces",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Start interactive mode
  %(prog)s "What does this project do?"     # Answer one query
  %(prog)s --json --cwd ../app "List the tests"

Use /tools in interactive mode to see available tools.
""",
    )
    parser.add_argument("query", nargs="?", help="Run a single query and exit")
    parser.add_argument("--config", help="Path to codeloop.yaml (default: $CODELOOP_CONFIG)")
    parser.add_argument("--cwd", default=None, help="Workspace directory (default: current)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--debug", action="store_true", help="Log per-step engine detail")
    parser.add_argument("--json", action="store_true", help="Output results as JSON (for scripting)")
    parser.add_argument("--max-tools", type=int, default=None, help="Tool executions per query")

    args = parser.parse_args(argv)

    try:
        app_config = load_app_config(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(app_config.log_level, verbose=args.verbose or args.debug)

    working_directory = os.path.abspath(args.cwd or os.getcwd())
    if not os.path.isdir(working_directory):
        print(f"Not a directory: {working_directory}", file=sys.stderr)
        return 2

    engine = build_engine(
        app_config,
        working_directory,
        max_tools=args.max_tools,
        debug=args.debug,
    )

    try:
        if args.query is not None:
            response = engine.process_query(args.query)
            if args.json:
                print(json.dumps({"query": args.query, **response.to_dict()}, indent=2))
            elif response.complete:
                print(response.response_text)
            else:
                for error in response.errors:
                    print(f"Error [{error.code}]: {error.message}", file=sys.stderr)
            return 0 if response.complete else 1

        signal.signal(signal.SIGINT, _signal_handler)
        InteractiveCLI(engine, verbose=args.verbose).run()
        return 0
    finally:
        engine.llm.close()
        if engine.tracing_client is not None:
            engine.tracing_client.shutdown()


if __name__ == "__main__":
    sys.exit(main())
