"""Taskgate CLI — run the services and use them from a terminal.

Usage:
    taskgate serve identity                      # Identity service on :3001
    taskgate serve tasks                         # Task service on :3002
    taskgate register alice alice@example.com    # Create account, print token
    taskgate login alice                         # Print a fresh token
    export TASKGATE_TOKEN=<token>
    taskgate tasks list --status pending         # Your tasks
    taskgate tasks add "write report" -p high    # New task
    taskgate tasks done 3                        # Mark completed
    taskgate tasks delete 3
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx

from taskgate import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_IDENTITY_URL = "http://localhost:3001"
DEFAULT_TASK_URL = "http://localhost:3002"


def _identity_url() -> str:
    return os.environ.get("TASKGATE_IDENTITY_URL", DEFAULT_IDENTITY_URL).rstrip("/")


def _task_url() -> str:
    return os.environ.get("TASKGATE_TASK_URL", DEFAULT_TASK_URL).rstrip("/")


def _client(base_url: str, token: Optional[str] = None) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    return asyncio.run(coro)


def _require_token(token: Optional[str]) -> str:
    if not token:
        click.secho(
            "Error: --token required (or set TASKGATE_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return token


def _check(r: httpx.Response) -> dict | list:
    """Return the JSON body, or print the server's error and exit."""
    if r.is_success:
        return r.json()
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error") or r.text
    else:
        detail = r.text
    click.secho(f"Error ({r.status_code}): {detail}", fg="red", err=True)
    sys.exit(1)


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _status_color(status: str) -> str:
    return {
        "pending": "yellow",
        "in_progress": "cyan",
        "completed": "green",
    }.get(status, "white")


def _print_task(task: dict):
    click.echo(f"#{task['id']}  {task['title']}")
    click.echo(f"  Status:   {click.style(task['status'], fg=_status_color(task['status']))}")
    click.echo(f"  Priority: {task['priority']}")
    if task.get("description"):
        click.echo(f"  {task['description']}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="taskgate")
def main():
    """Taskgate — token-gated task management."""


# ---------------------------------------------------------------------------
# taskgate serve
# ---------------------------------------------------------------------------


@main.command()
@click.argument("service", type=click.Choice(["identity", "tasks"]))
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(service: str, host: Optional[str], port: Optional[int], reload: bool):
    """Run one of the services with uvicorn."""
    import uvicorn

    from taskgate.config import settings

    app_path = "taskgate.main:identity_app" if service == "identity" else "taskgate.main:task_app"
    default_port = settings.identity_port if service == "identity" else settings.task_port
    uvicorn.run(
        app_path,
        host=host or settings.host,
        port=port or default_port,
        reload=reload,
        log_config=None,
    )


# ---------------------------------------------------------------------------
# taskgate register / login
# ---------------------------------------------------------------------------


@main.command()
@click.argument("username")
@click.argument("email")
@click.password_option()
def register(username: str, email: str, password: str):
    """Create an account and print its token."""
    _run(_auth_impl("/api/auth/register", {
        "username": username, "email": email, "password": password,
    }))


@main.command()
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True)
def login(username: str, password: str):
    """Log in and print a fresh token."""
    _run(_auth_impl("/api/auth/login", {"username": username, "password": password}))


async def _auth_impl(path: str, body: dict):
    async with _client(_identity_url()) as c:
        data = _check(await c.post(path, json=body))
    user = data["user"]
    click.secho(f"{data['message']} — {user['username']} (id {user['id']})", fg="green", err=True)
    click.echo(data["token"])


# ---------------------------------------------------------------------------
# taskgate tasks ...
# ---------------------------------------------------------------------------


token_option = click.option(
    "--token", envvar="TASKGATE_TOKEN", help="Bearer token (or set TASKGATE_TOKEN)"
)


@main.group()
def tasks():
    """Manage your tasks."""


@tasks.command("list")
@token_option
@click.option("--status", "-s", type=click.Choice(["pending", "in_progress", "completed"]))
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def list_tasks(token: Optional[str], status: Optional[str], as_json: bool):
    """List your tasks."""
    _run(_list_impl(_require_token(token), status, as_json))


async def _list_impl(token: str, status: Optional[str], as_json: bool):
    params = {"status": status} if status else {}
    async with _client(_task_url(), token) as c:
        rows = _check(await c.get("/api/tasks", params=params))

    if as_json:
        click.echo(_pretty_json(rows))
        return
    if not rows:
        click.echo("No tasks.")
        return
    _print_table(rows, [
        ("ID", "id", 6),
        ("STATUS", "status", 12),
        ("PRIORITY", "priority", 8),
        ("TITLE", "title", 50),
    ])


@tasks.command("add")
@token_option
@click.argument("title")
@click.option("--description", "-d", default="")
@click.option("--priority", "-p", type=click.Choice(["low", "medium", "high"]), default="medium")
def add_task(token: Optional[str], title: str, description: str, priority: str):
    """Create a task."""
    _run(_request_impl(_require_token(token), "POST", "/api/tasks", {
        "title": title, "description": description, "priority": priority,
    }))


@tasks.command("show")
@token_option
@click.argument("task_id", type=int)
def show_task(token: Optional[str], task_id: int):
    """Show one task."""
    _run(_request_impl(_require_token(token), "GET", f"/api/tasks/{task_id}"))


@tasks.command("update")
@token_option
@click.argument("task_id", type=int)
@click.option("--title")
@click.option("--description", "-d")
@click.option("--status", "-s", type=click.Choice(["pending", "in_progress", "completed"]))
@click.option("--priority", "-p", type=click.Choice(["low", "medium", "high"]))
def update_task(token: Optional[str], task_id: int, title: Optional[str],
                description: Optional[str], status: Optional[str], priority: Optional[str]):
    """Change fields of a task."""
    body = {
        k: v for k, v in {
            "title": title, "description": description,
            "status": status, "priority": priority,
        }.items() if v is not None
    }
    if not body:
        click.secho("Nothing to update.", fg="yellow", err=True)
        sys.exit(1)
    _run(_request_impl(_require_token(token), "PUT", f"/api/tasks/{task_id}", body))


@tasks.command("done")
@token_option
@click.argument("task_id", type=int)
def complete_task(token: Optional[str], task_id: int):
    """Mark a task completed."""
    _run(_request_impl(_require_token(token), "PUT", f"/api/tasks/{task_id}", {
        "status": "completed",
    }))


async def _request_impl(token: str, method: str, path: str, body: Optional[dict] = None):
    async with _client(_task_url(), token) as c:
        task = _check(await c.request(method, path, json=body))
    _print_task(task)


@tasks.command("delete")
@token_option
@click.argument("task_id", type=int)
def delete_task(token: Optional[str], task_id: int):
    """Delete a task."""
    _run(_delete_impl(_require_token(token), task_id))


async def _delete_impl(token: str, task_id: int):
    async with _client(_task_url(), token) as c:
        data = _check(await c.delete(f"/api/tasks/{task_id}"))
    click.secho(data["message"], fg="green")


if __name__ == "__main__":
    main()
