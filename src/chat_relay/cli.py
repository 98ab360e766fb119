"""CLI entry point for chat-relay."""

from pathlib import Path

import click
import uvicorn

from .config import load_settings
from .logs import LogManager


@click.group()
def main():
    """Relay chats to an LLM provider with a flat-file store and daily logs."""
    pass


@main.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to config.json.")
@click.option("--port", type=int, default=None, help="Port to serve on (overrides config).")
@click.option("--host", default=None, help="Host to bind to (overrides config).")
def serve(config_path: Path | None, port: int | None, host: str | None):
    """Start the web server."""
    from .server import create_app

    settings = load_settings(config_path)
    host = settings.host if host is None else host
    port = settings.port if port is None else port
    click.echo(f"Starting chat-relay on http://{host}:{port}")
    click.echo(f"Admin API: http://{host}:{port}/admin/api")
    uvicorn.run(create_app(settings), host=host, port=port)


@main.command("sweep-logs")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to config.json.")
@click.option("--days", type=int, default=None, help="Days of logs to keep (overrides config).")
def sweep_logs(config_path: Path | None, days: int | None):
    """Delete log files older than the retention window."""
    settings = load_settings(config_path)
    days = settings.retention_days if days is None else days
    deleted = LogManager(settings.log_dir).sweep_retention(days)
    click.echo(f"Deleted {len(deleted)} log file(s)")


@main.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to config.json.")
@click.option("--limit", type=int, default=20, show_default=True, help="Number of records to show.")
def logs(config_path: Path | None, limit: int):
    """Show today's most recent log records, newest first."""
    settings = load_settings(config_path)
    for record in LogManager(settings.log_dir, echo=False).tail(limit):
        if "raw" in record:
            click.echo(record["raw"])
        else:
            click.echo(f"[{record.get('timestamp')}] {str(record.get('level', '')).upper()}: {record.get('message')}")
