"""Command line interface, installed as ``tt``."""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import click
from pydantic import ValidationError

from . import services
from .config import Settings, load_settings
from .errors import InvalidData, LedgerError
from .filters import parse_filter
from .schemas import Statistic, Timer, duration
from .statistics import Schedule
from .storage import Storage, open_storage
from .utils import configure_logging, format_duration, parse_day, parse_timestamp

GROUP_PROJECT = "project"
GROUP_TASK = "task"
GROUP_DAY = "day"

LOCAL_FORMAT = "%Y-%m-%d %H:%M:%S"
WITHOUT_TASK = "without task"


@dataclass
class CliState:
    settings: Settings
    storage: Optional[Storage] = None

    @property
    def tz(self) -> dt.tzinfo:
        return ZoneInfo(self.settings.timezone)

    @property
    def schedule(self) -> Schedule:
        return Schedule.from_settings(self.settings)

    def open(self) -> Storage:
        if self.storage is None:
            self.storage = open_storage(self.settings)
            click.get_current_context().call_on_close(self.storage.close)
        return self.storage

    def timestamp(self, text: Optional[str]) -> Optional[dt.datetime]:
        return parse_timestamp(text, self.tz) if text else None

    def local(self, value: Optional[dt.datetime]) -> str:
        return value.astimezone(self.tz).strftime(LOCAL_FORMAT) if value else "-"

    def duration(self, value: dt.timedelta) -> str:
        return format_duration(value, self.settings.precision_delta)


class LedgerGroup(click.Group):
    """Reports ledger errors as ``Error: <message>`` with exit status 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except LedgerError as exc:
            raise click.ClickException(str(exc)) from exc


def _split_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def _group_by(value: Optional[str]) -> Tuple[bool, bool, bool]:
    # unknown groups are ignored, grouping by task implies grouping by project
    groups = {group.strip() for group in (value or "").split(",")}
    by_task = GROUP_TASK in groups
    return GROUP_PROJECT in groups or by_task, by_task, GROUP_DAY in groups


def _describe(timer: Timer) -> str:
    if timer.task:
        return f"project {timer.project} with task {timer.task}"
    return f"project {timer.project}"


def _print_statistic(state: CliState, statistic: Statistic, indent: str = "") -> None:
    click.echo(f"{indent}worked    : {state.duration(statistic.worked)}")
    click.echo(f"{indent}planned   : {state.duration(statistic.planned)}")
    click.echo(f"{indent}difference: {state.duration(statistic.difference)}")
    click.echo(f"{indent}percentage: {statistic.percentage * 100:.2f}%")
    if statistic.by_projects:
        click.echo(f"{indent}by projects:")
        for project in statistic.by_projects:
            click.echo(f"{indent}  {project.name}: {state.duration(project.worked)}")
            if project.by_tasks:
                click.echo(f"{indent}  by tasks:")
                for task in project.by_tasks:
                    click.echo(f"{indent}    {task.name or WITHOUT_TASK}: {state.duration(task.worked)}")


def _print_daily(state: CliState, statistics: Dict[str, Statistic]) -> None:
    for day in sorted(statistics):
        click.echo(day)
        _print_statistic(state, statistics[day], "  ")
        click.echo("----------")


@click.group(cls=LedgerGroup, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """tt - track the time you work on projects and tasks."""
    if ctx.obj is None:
        try:
            ctx.obj = CliState(load_settings())
        except ValidationError as exc:
            raise click.ClickException(f"invalid configuration: {exc}") from exc
    configure_logging("DEBUG" if verbose else ctx.obj.settings.log_level)


@cli.command()
@click.argument("project")
@click.option("-t", "--task", default=None, help="Task you are working on.")
@click.option("--tags", default=None, help="Comma separated list of tags.")
@click.option("--at", "timestamp", default=None, help="Start time, e.g. 2020-04-19T08:00:00+02:00 or 08:00.")
@click.pass_obj
def start(state: CliState, project: str, task: Optional[str], tags: Optional[str], timestamp: Optional[str]) -> None:
    """Start tracking time on PROJECT."""
    timer = services.start_timer(
        state.open(),
        project,
        task,
        _split_tags(tags),
        state.timestamp(timestamp),
        state.settings.round_start_time,
    )
    click.echo(f"Started tracking {_describe(timer)} at {state.local(timer.start)}.")


@cli.command()
@click.option("--at", "timestamp", default=None, help="Stop time, e.g. 2020-04-19T17:00:00+02:00 or 17:00.")
@click.pass_obj
def stop(state: CliState, timestamp: Optional[str]) -> None:
    """Stop the running timer."""
    timer = services.stop_timer(state.open(), state.timestamp(timestamp), state.settings.round_start_time)
    click.echo(f"You worked for {state.duration(duration(timer))}! Good job.")


@cli.command()
@click.option("--at", "timestamp", default=None, help="Start time of the resumed timer.")
@click.pass_obj
def resume(state: CliState, timestamp: Optional[str]) -> None:
    """Start a new timer with the project, task and tags of the last one."""
    timer = services.resume_timer(state.open(), state.timestamp(timestamp), state.settings.round_start_time)
    click.echo(f"Resumed tracking {_describe(timer)}.")


@cli.command()
@click.argument("project")
@click.option("-t", "--task", default=None, help="Task you are switching to.")
@click.option("--tags", default=None, help="Comma separated list of tags.")
@click.option("--at", "timestamp", default=None, help="Time of the switch.")
@click.pass_obj
def switch(state: CliState, project: str, task: Optional[str], tags: Optional[str], timestamp: Optional[str]) -> None:
    """Stop the running timer and start tracking PROJECT."""
    stopped, started = services.switch_timer(
        state.open(),
        project,
        task,
        _split_tags(tags),
        state.timestamp(timestamp),
        state.settings.round_start_time,
    )
    click.echo(f"Stopped {_describe(stopped)} after {state.duration(duration(stopped))}.")
    click.echo(f"Started tracking {_describe(started)}.")


@cli.command()
@click.pass_obj
def status(state: CliState) -> None:
    """Show whether a timer is running."""
    timer = services.get_running_timer(state.open())
    if timer is None:
        click.echo("Currently not working. Enjoy your free time :)")
        return
    click.echo(f"Currently timing {_describe(timer)} for {state.duration(duration(timer))}.")


def _timer_line(state: CliState, timer: Timer) -> str:
    return "  ".join(
        [
            timer.id,
            state.local(timer.start),
            state.local(timer.stop),
            timer.project,
            timer.task or "-",
            ",".join(timer.tags) or "-",
        ]
    )


def _total(timers: List[Timer]) -> dt.timedelta:
    return sum((duration(timer) for timer in timers if timer.start is not None), dt.timedelta(0))


def _group_labels(state: CliState, timer: Timer, by_project: bool, by_task: bool, by_day: bool) -> Tuple[str, ...]:
    labels = []
    if by_day:
        labels.append(state.local(timer.start)[:10])
    if by_project:
        labels.append(timer.project)
    if by_task:
        labels.append(timer.task or WITHOUT_TASK)
    return tuple(labels)


@cli.command(name="list")
@click.option("-f", "--filter", "filter_text", default=None, help="Filter, e.g. project=work;since=2024-01-01.")
@click.option("-g", "--group-by", default=None, help="Comma separated groups: project, task, day.")
@click.option("-s", "--short", is_flag=True, help="With --group-by, print only the total of each group.")
@click.option("--json", "as_json", is_flag=True, help="Print timers as JSON.")
@click.pass_obj
def list_command(
    state: CliState, filter_text: Optional[str], group_by: Optional[str], short: bool, as_json: bool
) -> None:
    """List timers, oldest first, optionally grouped with subtotals."""
    timers = services.list_timers(state.open(), parse_filter(filter_text, state.tz))
    if as_json:
        click.echo(json.dumps([timer.model_dump(mode="json") for timer in timers], indent=2))
        return
    groups = _group_by(group_by)
    if not any(groups):
        for timer in timers:
            click.echo(_timer_line(state, timer))
        click.echo(f"Total duration tracked: {state.duration(_total(timers))}")
        return
    grouped: Dict[Tuple[str, ...], List[Timer]] = {}
    for timer in timers:
        grouped.setdefault(_group_labels(state, timer, *groups), []).append(timer)
    for labels in sorted(grouped):
        name = " / ".join(labels)
        subtotal = state.duration(_total(grouped[labels]))
        if short:
            click.echo(f"{name}: {subtotal}")
            continue
        click.echo(f"### {name} ###")
        for timer in grouped[labels]:
            click.echo(_timer_line(state, timer))
        click.echo(f"Total: {subtotal}")
        click.echo()
    click.echo(f"Overall total duration tracked: {state.duration(_total(timers))}")


@cli.command()
@click.pass_obj
def inspect(state: CliState) -> None:
    """Look for timers that break the ledger's rules.

    Only data written by other tools, e.g. an old storage.json, can contain
    such timers. Fix them with `tt edit`.
    """
    click.echo("Checking timers...")
    problems = services.inspect_ledger(state.open())
    for problem in problems:
        click.echo(f"  {problem}")
    if problems:
        raise click.ClickException(f"found {len(problems)} problem(s)")
    click.echo("ok")


@cli.command()
@click.argument("timer_id")
@click.option("--remove", is_flag=True, help="Remove the timer instead of editing it.")
@click.pass_obj
def edit(state: CliState, timer_id: str, remove: bool) -> None:
    """Edit the timer TIMER_ID in $EDITOR."""
    storage = state.open()
    if remove:
        timer = services.remove_timer(storage, timer_id)
        click.echo(f"Removed timer with id {timer.id}.")
        return
    timer = storage.get_timer_by_id(timer_id)
    edited = click.edit(timer.model_dump_json(indent=2), extension=".json")
    if edited is None:
        click.echo("No changes made.")
        return
    try:
        data = json.loads(edited)
    except json.JSONDecodeError as exc:
        raise InvalidData(f"edited timer is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise InvalidData("edited timer must be a JSON object")
    timer = services.edit_timer(storage, timer_id, data, replace=True)
    click.echo(f"Updated timer with id {timer.id}.")


@cli.command()
@click.option("-f", "--filter", "filter_text", default=None, help="Filter the timers before computing statistics.")
@click.option("-g", "--group-by", default=None, help="Comma separated groups: project, task, day.")
@click.option("--json", "as_json", is_flag=True, help="Print statistics as JSON.")
@click.pass_obj
def stats(state: CliState, filter_text: Optional[str], group_by: Optional[str], as_json: bool) -> None:
    """Show worked time against planned time.

    \b
    worked    : total time worked
    planned   : planned work time as configured by the timeclock
    difference: worked minus planned
    percentage: share of planned time fulfilled
    """
    storage = state.open()
    by_project, by_task, by_day = _group_by(group_by)
    filter = parse_filter(filter_text, state.tz)
    if by_day:
        daily = services.time_statistics_by_day(storage, state.schedule, filter, by_project, by_task)
        if as_json:
            click.echo(json.dumps({day: item.model_dump(mode="json", exclude_none=True) for day, item in daily.items()}))
            return
        _print_daily(state, daily)
        click.echo("Summary:")
        _print_statistic(state, services.time_statistics(storage, state.schedule, filter), "  ")
        return
    statistic = services.time_statistics(storage, state.schedule, filter, by_project, by_task)
    if as_json:
        click.echo(statistic.model_dump_json(exclude_none=True))
        return
    _print_statistic(state, statistic)


@cli.command()
@click.argument("export_format", type=click.Choice(["csv", "json"]), default="csv")
@click.option("-f", "--filter", "filter_text", default=None, help="Filter the timers before exporting.")
@click.pass_obj
def export(state: CliState, export_format: str, filter_text: Optional[str]) -> None:
    """Export timers as CSV or JSON."""
    timers = services.list_timers(state.open(), parse_filter(filter_text, state.tz))
    if export_format == "json":
        click.echo(json.dumps([timer.model_dump(mode="json") for timer in timers]))
        return
    click.echo(services.timers_to_csv(timers), nl=False)


@cli.group()
def vacation() -> None:
    """Manage vacation days."""


@vacation.command(name="add")
@click.argument("day")
@click.option("--half", is_flag=True, help="Only half of the day is off.")
@click.pass_obj
def vacation_add(state: CliState, day: str, half: bool) -> None:
    vacation_day = services.add_vacation_day(state.open(), parse_day(day), half)
    kind = "half vacation day" if vacation_day.half else "vacation day"
    click.echo(f"Added {kind} {vacation_day.day.isoformat()}.")


@vacation.command(name="list")
@click.pass_obj
def vacation_list(state: CliState) -> None:
    for vacation_day in services.list_vacation_days(state.open()):
        suffix = " (half)" if vacation_day.half else ""
        click.echo(f"{vacation_day.id}  {vacation_day.day.isoformat()}{suffix}")


@vacation.command(name="remove")
@click.argument("key")
@click.pass_obj
def vacation_remove(state: CliState, key: str) -> None:
    """Remove the vacation day KEY, given as YYYY-MM-DD or id."""
    vacation_day = services.remove_vacation_day(state.open(), key)
    click.echo(f"Removed vacation day {vacation_day.day.isoformat()}.")


@cli.command()
@click.option("--host", default=None, help="Interface to bind, defaults to the configured host.")
@click.option("--port", default=None, type=int, help="Port to bind, defaults to the configured port.")
@click.pass_obj
def serve(state: CliState, host: Optional[str], port: Optional[int]) -> None:
    """Serve the ledger over HTTP."""
    import uvicorn

    from .api import create_app

    app = create_app(state.open(), state.settings)
    uvicorn.run(app, host=host or state.settings.host, port=port or state.settings.port)


def main() -> None:
    cli(prog_name="tt")


if __name__ == "__main__":  # pragma: no cover
    main()
