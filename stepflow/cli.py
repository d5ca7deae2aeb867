"""Command line interface for inspecting and driving application workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import typer

from stepflow.config import load_config
from stepflow.decisions import DecisionService
from stepflow.exceptions import NotFoundError
from stepflow.persistence import get_repository
from stepflow.scheduler import UnlockScheduler
from stepflow.step_state import StepStateMachine

app = typer.Typer(help="CLI for stepflow application workflows")

# Command groups
application_app = typer.Typer(help="Commands for inspecting applications")
decisions_app = typer.Typer(help="Commands for publishing decisions")
scheduler_app = typer.Typer(help="Commands for scheduled unlocks")

app.add_typer(application_app, name="application")
app.add_typer(decisions_app, name="decisions")
app.add_typer(scheduler_app, name="scheduler")


@app.callback()
def main() -> None:
    """stepflow CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.logging.level.upper())


@application_app.command("show")
def application_show(application_id: str) -> None:
    """Print the state of every step of an application, in step order."""
    repo = get_repository()
    machine = StepStateMachine(repo)
    try:
        states = asyncio.run(machine.get_step_states(application_id))
    except NotFoundError:
        typer.echo("Application not found")
        raise typer.Exit(code=1)

    typer.echo(f"Application {application_id}")
    for view in states:
        typer.echo(
            f"  [{view.step_index}] {view.step_title or view.step_id}: "
            f"{view.status.value} (revisions: {view.revision_cycle_count})"
        )


async def _recompute(machine: StepStateMachine, application_id: str) -> List[str]:
    if await machine.repository.get_application(application_id) is None:
        raise NotFoundError("Application not found")
    return await machine.recompute_all_step_states(application_id)


@application_app.command("recompute")
def application_recompute(application_id: str) -> None:
    """Re-evaluate unlock policies for one application."""
    repo = get_repository()
    machine = StepStateMachine(repo)
    try:
        unlocked = asyncio.run(_recompute(machine, application_id))
    except NotFoundError:
        typer.echo("Application not found")
        raise typer.Exit(code=1)

    if unlocked:
        typer.echo(f"Unlocked {len(unlocked)} step(s): {', '.join(unlocked)}")
    else:
        typer.echo("No steps unlocked")


@decisions_app.command("publish")
def decisions_publish(
    event_id: str,
    application_id: Optional[List[str]] = typer.Option(
        None, "--application-id", help="Only publish these applications"
    ),
) -> None:
    """Publish drafted decisions of an event."""
    config = load_config()
    repo = get_repository()
    service = DecisionService(repo, StepStateMachine(repo), config=config.engine)
    count = asyncio.run(service.publish_decisions(event_id, application_id or None))
    typer.echo(f"Published {count} decision(s)")


@scheduler_app.command("run-once")
def scheduler_run_once() -> None:
    """Run a single sweep of date-based unlocks."""
    config = load_config()
    repo = get_repository()
    scheduler = UnlockScheduler(repo, StepStateMachine(repo), config.engine)
    count = asyncio.run(scheduler.run_once())
    typer.echo(f"Recomputed {count} application(s)")


if __name__ == "__main__":
    app()
