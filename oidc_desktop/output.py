"""Output formatters for human-readable and JSON output."""

import json
import sys
from datetime import datetime
from typing import Any

import click

from .errors import ClassifiedError, ErrorHandler


class ErrorFormatter:
    """Turns a ClassifiedError into titled rows for display."""

    def get_error_title(self, error: ClassifiedError) -> str:
        return error.user_message

    def get_error_lines(
        self, error: ClassifiedError, include_debug: bool = False
    ) -> list[tuple[str, str]]:
        """Get the support details of an error.

        URL and stack frames are developer details, included only when
        include_debug is set.
        """
        lines: list[tuple[str, str]] = []

        if error.area:
            lines.append(("Area", error.area))

        if error.error_code:
            lines.append(("Error Code", error.error_code))

        if error.status_code > 0:
            lines.append(("Status Code", str(error.status_code)))

        if error.instance_id > 0:
            lines.append(("Id", str(error.instance_id)))

        if error.utc_time:
            lines.append(("UTC Time", format_utc_time(error.utc_time)))

        if error.details:
            lines.append(("Details", error.details))

        if include_debug:
            if error.url:
                lines.append(("URL", error.url))

            if error.stack_frames:
                lines.append(("Stack", "\n".join(error.stack_frames)))

        return lines


def format_utc_time(utc_time: str) -> str:
    """Format an ISO timestamp as e.g. '05 Mar 2024 14:02:33'.

    Values that are not ISO timestamps are returned unchanged.
    """
    try:
        parsed = datetime.fromisoformat(utc_time.replace("Z", "+00:00"))
    except ValueError:
        return utc_time
    return parsed.strftime("%d %b %Y %H:%M:%S")


def format_json(data: Any) -> str:
    """Format data as a JSON success envelope."""
    return json.dumps({"success": True, "data": data}, indent=2, default=str)


def format_error_json(error: ClassifiedError, include_debug: bool = False) -> str:
    """Format a classified error as JSON."""
    payload = error.to_dict()
    if not include_debug:
        payload.pop("url", None)
        payload.pop("stack_frames", None)
    return json.dumps({"success": False, "error": payload}, indent=2)


def output_json(data: Any) -> None:
    """Output data as JSON to stdout."""
    click.echo(format_json(data))


def output_human(message: str) -> None:
    """Output a human-readable message."""
    click.echo(message)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False, debug: bool = False):
        self.json_mode = json_mode
        self.debug = debug
        self.formatter = ErrorFormatter()

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            output_json(data)
        else:
            if human_message:
                output_human(human_message)
            else:
                output_human(json.dumps(data, indent=2, default=str))

    def status(self, message: str) -> None:
        """Output a progress message (stderr, human mode only)."""
        if not self.json_mode:
            click.secho(message, fg="cyan", err=True)

    def error(self, exception: Exception) -> None:
        """Classify an exception, output it and exit with status 1."""
        error = ErrorHandler.from_exception(exception)

        if self.json_mode:
            click.echo(format_error_json(error, self.debug))
        else:
            click.secho(f"Error: {self.formatter.get_error_title(error)}", fg="red", err=True)
            lines = self.formatter.get_error_lines(error, self.debug)
            width = max((len(title) for title, _ in lines), default=0)
            for title, value in lines:
                click.echo(f"  {title.ljust(width)}  {value}", err=True)
        sys.exit(1)
