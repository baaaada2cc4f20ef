"""CLI entry points for mr-pilot."""

import argparse
import signal
import sys
from pathlib import Path

import anyio

from mrpilot.config import ReviewConfig, ServerConfig
from mrpilot.errors import ConfigError, MrPilotError
from mrpilot.review import ReviewResult, run_review
from mrpilot.server import run_server
from mrpilot.ui import (
    configure_logging,
    create_console,
    print_banner,
    print_error,
    print_info,
    print_review_report,
    print_success,
)

console = create_console()


def _signal_handler(signum: int, frame: object) -> None:
    """Turn termination signals into KeyboardInterrupt."""
    raise KeyboardInterrupt


def _install_signal_handlers() -> None:
    signal.signal(signal.SIGTERM, _signal_handler)


def _read_text_file(path: str | None, label: str) -> str | None:
    """Read an optional text file given on the command line.

    Raises:
        ConfigError: If the file cannot be read.
    """
    if not path:
        return None
    try:
        return Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read {label} '{path}': {e}") from e


def _build_review_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mr-pilot",
        description="AI code review for GitLab Merge Requests and GitHub Pull Requests",
    )
    parser.add_argument(
        "target",
        metavar="MR_URL_OR_ID",
        help="MR/PR URL, or numeric ID (with --project or a default project in env)",
    )
    parser.add_argument(
        "-c", "--comment",
        action="store_true",
        default=False,
        help="Post the review as a comment on the MR/PR",
    )
    parser.add_argument(
        "-i", "--input-file",
        default=None,
        metavar="PATH",
        dest="input_file",
        help="Ticket/requirement specification file to validate the change against",
    )
    parser.add_argument(
        "-g", "--guidelines-file",
        default=None,
        metavar="PATH",
        dest="guidelines_file",
        help="Project guidelines file used to reduce false positives",
    )
    parser.add_argument(
        "-p", "--project",
        default=None,
        help='Project path ("group/subgroup/project" or "owner/repo")',
    )
    parser.add_argument(
        "--platform",
        choices=["gitlab", "github"],
        default=None,
        help="Platform override (default: auto-detect)",
    )
    parser.add_argument(
        "-m", "--max-diff-chars",
        type=int,
        default=None,
        metavar="N",
        dest="max_diff_chars",
        help="Maximum diff characters sent to the LLM (default: 50000 or MAX_DIFF_CHARS)",
    )
    parser.add_argument(
        "--acceptance-criteria",
        default=None,
        metavar="TEXT",
        dest="acceptance_criteria",
        help="Acceptance criteria appended to the posted comment",
    )
    parser.add_argument(
        "--backend", "-b",
        choices=["openrouter", "openai", "ollama", "azure", "claude"],
        default=None,
        help="LLM backend (default: LLM_PROVIDER)",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model to use (default: LLM_MODEL or backend-specific)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        default=False,
        help="Log the prompt and the raw LLM answer",
    )
    return parser


def _parse_review_args(argv: list[str] | None = None) -> ReviewConfig:
    """Parse review arguments into a ReviewConfig.

    Raises:
        ConfigError: If an input file cannot be read.
    """
    parser = _build_review_parser()
    args = parser.parse_args(argv)

    if args.max_diff_chars is not None and args.max_diff_chars <= 0:
        parser.error("--max-diff-chars must be a positive integer")

    return ReviewConfig(
        target=args.target,
        project=args.project,
        platform=args.platform,
        ticket_spec=_read_text_file(args.input_file, "input file"),
        guidelines=_read_text_file(args.guidelines_file, "guidelines file"),
        acceptance_criteria=args.acceptance_criteria,
        max_diff_chars=args.max_diff_chars,
        post_comment=args.comment,
        debug=args.debug,
        backend=args.backend,
        model=args.model,
    )


async def _review(config: ReviewConfig) -> ReviewResult:
    print_info(console, f"Reviewing {config.target}")
    result = await run_review(config)
    console.print()
    print_review_report(console, result)
    if result.comment_posted:
        print_success(console, "Review posted as a comment")
    return result


def main(argv: list[str] | None = None) -> None:
    """Run the review CLI entry point.

    Raises:
        SystemExit: Always raised with exit code 0 on success, 130 on keyboard
            interrupt, or 1 on error.

    """
    _install_signal_handlers()
    try:
        config = _parse_review_args(argv)
        configure_logging("DEBUG" if config.debug else "WARNING")
        print_banner(console)
        anyio.run(_review, config)
    except KeyboardInterrupt:
        console.print()
        print_error(console, "Aborted", "Interrupted by user")
        sys.exit(130)
    except MrPilotError as e:
        console.print()
        print_error(console, "Error", str(e))
        sys.exit(1)
    sys.exit(0)


def _parse_serve_args(argv: list[str] | None = None) -> ServerConfig:
    """Parse server arguments on top of the environment configuration.

    Raises:
        ConfigError: If the environment holds invalid values.
    """
    parser = argparse.ArgumentParser(
        prog="mr-pilot-server",
        description="MCP server exposing the mr-pilot review tool",
    )
    parser.add_argument("--host", default=None, help="HTTP listen address (default: MCP_SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="HTTP listen port (default: MCP_SERVER_PORT)")

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--proxy",
        action="store_true",
        default=False,
        help="Relay tool calls to a connected worker (requires SLAVE_CODES)",
    )
    mode_group.add_argument(
        "--slave",
        action="store_true",
        default=False,
        help="Connect to a proxy and execute its tool calls (requires SLAVE_CODE)",
    )
    parser.add_argument("--proxy-url", default=None, dest="proxy_url", help="Proxy channel URL (default: PROXY_SERVER_URL or PROXY_URL)")
    parser.add_argument("--log-level", default=None, dest="log_level", help="Log level (default: LOG_LEVEL)")

    args = parser.parse_args(argv)
    config = ServerConfig.from_env()

    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.proxy:
        config.proxy_mode, config.slave_mode = True, False
    if args.slave:
        config.slave_mode, config.proxy_mode = True, False
    if args.proxy_url:
        config.proxy_url = args.proxy_url
    if args.log_level:
        config.log_level = args.log_level
    return config


def serve(argv: list[str] | None = None) -> None:
    """Run the MCP server entry point.

    Raises:
        SystemExit: 0 after a clean shutdown, 1 on configuration or bind errors.

    """
    try:
        config = _parse_serve_args(argv)
        config.validate()
        configure_logging(config.log_level)
        anyio.run(run_server, config)
    except KeyboardInterrupt:
        sys.exit(130)
    except (MrPilotError, OSError) as e:
        print_error(console, "Server Error", str(e))
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
