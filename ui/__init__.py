"""UI layer -- Rich dashboard, output formatters, and logging setup."""

from .dashboard import (
    ProgressDisplay,
    console,
    create_histogram,
    print_endpoint,
    print_final_results,
    print_header,
    print_health,
    print_rate_history,
)
from .logging_setup import configure_logging
from .output import create_result_json, format_text_result

__all__ = [
    "ProgressDisplay",
    "configure_logging",
    "console",
    "create_histogram",
    "create_result_json",
    "format_text_result",
    "print_endpoint",
    "print_final_results",
    "print_header",
    "print_health",
    "print_rate_history",
]
