"""Neon terminal output for mr-pilot.

Rich-based rendering of the review report, status messages and the startup
banner, plus the logging setup that routes records through the same console.
"""

import logging

import pyfiglet
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from mrpilot.review import ReviewResult

# =============================================================================
# Color Theme (Dracula-based)
# =============================================================================

NEON_COLORS = {
    "background": "#282A36",
    "foreground": "#F8F8F2",
    "red": "#FF5555",
    "green": "#50FA7B",
    "yellow": "#F1FA8C",
    "purple": "#BD93F9",
    "pink": "#FF79C6",
    "cyan": "#8BE9FD",
    "orange": "#FFB86C",
}

NEON_THEME = Theme({
    "neon.red": NEON_COLORS["red"],
    "neon.green": NEON_COLORS["green"],
    "neon.cyan": NEON_COLORS["cyan"],
    "neon.fg": NEON_COLORS["foreground"],
    "neon.error": f"bold {NEON_COLORS['red']}",
    "neon.success": f"bold {NEON_COLORS['green']}",
    "neon.warning": f"bold {NEON_COLORS['yellow']}",
    "neon.dim": f"dim {NEON_COLORS['foreground']}",
})

# Goal status -> (label, pill color)
GOAL_STATUS_STYLE = {
    "met": ("MET", NEON_COLORS["green"]),
    "partially_met": ("PARTIALLY MET", NEON_COLORS["yellow"]),
    "unmet": ("UNMET", NEON_COLORS["red"]),
}


def create_console(stderr: bool = False) -> Console:
    """Create a Rich Console with neon theme applied.

    Args:
        stderr: Write to stderr instead of stdout.

    Returns:
        Console: A new Rich Console instance configured with the neon theme.

    """
    return Console(theme=NEON_THEME, stderr=stderr)


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route the root logger through a RichHandler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        console: Console used by the handler. Defaults to a stderr console.

    """
    handler = RichHandler(
        console=console or create_console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def pill(text: str, bg_color: str, fg_color: str = NEON_COLORS["background"]) -> Text:
    """Create a pill-shaped badge with half-block edges.

    Args:
        text: The text to display inside the pill.
        bg_color: Background color hex code.
        fg_color: Foreground (text) color hex code.

    Returns:
        Rich Text object containing the styled pill.

    """
    result = Text()
    result.append("▌", style=Style(color=bg_color))
    result.append(text, style=Style(color=fg_color, bgcolor=bg_color, bold=True))
    result.append("▐", style=Style(color=bg_color))
    return result


def score_color(score: int) -> str:
    if score >= 70:
        return NEON_COLORS["green"]
    if score >= 50:
        return NEON_COLORS["yellow"]
    if score >= 30:
        return NEON_COLORS["orange"]
    return NEON_COLORS["red"]


# =============================================================================
# Banner
# =============================================================================


def print_banner(console: Console, text: str = "mr-pilot", tagline: str = "merge request review") -> None:
    """Print the pyfiglet banner inside a framed panel.

    Args:
        console: Rich Console instance for output.
        text: Text rendered as ASCII art.
        tagline: Dim line shown under the art.

    """
    try:
        art = pyfiglet.figlet_format(text, font="slant")
    except pyfiglet.FigletError:
        art = pyfiglet.figlet_format(text, font="standard")

    content = Text(art.rstrip("\n"), style=Style(color=NEON_COLORS["pink"], bold=True))
    content.append("\n    ~ ", style=Style(color=NEON_COLORS["purple"], dim=True))
    content.append(tagline, style=Style(color=NEON_COLORS["cyan"], dim=True))
    content.append(" ~", style=Style(color=NEON_COLORS["purple"], dim=True))

    console.print()
    console.print(Panel(
        content,
        box=box.DOUBLE_EDGE,
        border_style=Style(color=NEON_COLORS["purple"], dim=True),
        padding=(0, 2),
    ))


# =============================================================================
# Status messages
# =============================================================================


def print_error(console: Console, title: str, message: str) -> None:
    """Print an error panel with red styling.

    Args:
        console: Rich Console instance for output.
        title: Error title text.
        message: Detailed error message.

    """
    console.print(Panel(
        Text(message, style=Style(color=NEON_COLORS["red"])),
        title=f"⚠️  {title}",
        title_align="left",
        box=box.DOUBLE_EDGE,
        border_style=Style(color=NEON_COLORS["red"]),
        padding=(0, 1),
    ))


def print_warning(console: Console, message: str) -> None:
    console.print(Panel(
        Text(message, style=Style(color=NEON_COLORS["yellow"])),
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["yellow"]),
        padding=(0, 1),
    ))


def print_success(console: Console, message: str) -> None:
    console.print(f"[neon.success]✔[/] [neon.green]{message}[/]", highlight=False)


def print_info(console: Console, message: str) -> None:
    console.print(f"[neon.cyan]ℹ[/] [neon.fg]{message}[/]", highlight=False)


# =============================================================================
# Review report
# =============================================================================


def print_review_report(console: Console, result: ReviewResult) -> None:
    """Print the review verdict, issues and remarks.

    Args:
        console: Rich Console instance for output.
        result: Parsed review.

    """
    label, color = GOAL_STATUS_STYLE.get(
        result.goal_status, (result.goal_status.upper(), NEON_COLORS["purple"])
    )

    summary = Table(
        title="📋 MR Review Report",
        title_style=Style(color=NEON_COLORS["cyan"], bold=True),
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["purple"]),
        show_header=False,
        padding=(0, 1),
    )
    summary.add_column("Field", style=Style(color=NEON_COLORS["cyan"]))
    summary.add_column("Value", style=Style(color=NEON_COLORS["foreground"]))

    if result.title:
        summary.add_row("Title", result.title)
    if result.web_url:
        summary.add_row("URL", result.web_url)
    summary.add_row("Goal Status", pill(f" {label} ", color))
    summary.add_row(
        "Quality Score",
        Text(f"{result.score}/100", style=Style(color=score_color(result.score), bold=True)),
    )
    if result.comment_posted:
        summary.add_row("Comment", pill(" POSTED ", NEON_COLORS["green"]))
    console.print(summary)

    if result.issues:
        issues = Table(
            title="⚠️  Potential Issues",
            title_style=Style(color=NEON_COLORS["yellow"], bold=True),
            box=box.ROUNDED,
            border_style=Style(color=NEON_COLORS["purple"]),
            header_style=Style(color=NEON_COLORS["pink"], bold=True),
            show_lines=True,
        )
        issues.add_column("#", justify="right", style=Style(color=NEON_COLORS["cyan"]))
        issues.add_column("Issue", style=Style(color=NEON_COLORS["foreground"]))
        for i, issue in enumerate(result.issues, 1):
            issues.add_row(str(i), issue)
        console.print(issues)
    else:
        print_success(console, "No issues found")

    console.print(Panel(
        Text(result.remarks or "No remarks.", style=Style(color=NEON_COLORS["foreground"])),
        title="📝 Remarks",
        title_align="left",
        box=box.ROUNDED,
        border_style=Style(color=NEON_COLORS["cyan"]),
        padding=(0, 1),
    ))

    stats = result.diff_stats
    if stats is not None and stats.was_truncated:
        print_warning(
            console,
            f"Diff truncated: {stats.truncated_files} file(s) not reviewed. "
            f"Re-run with --max-diff-chars {stats.recommended_max_chars} to review everything.",
        )
