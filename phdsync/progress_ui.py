from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text


@dataclass(slots=True)
class ProgressHandle:
    task_id: TaskID
    total: int | None
    label: str


def _unit_columns() -> tuple:
    return (
        SpinnerColumn(),
        TextColumn("[bold]{task.fields[action]}"),
        TextColumn("{task.description}", markup=False),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TextColumn("{task.fields[state]}"),
    )


class RunProgressUI:
    """Progress bars counted in documents or operations.

    Without a console the bars are disabled, so library callers and tests run
    silently through the same code path.
    """

    def __init__(self, console: Console | None = None, *, transient: bool = True) -> None:
        self._progress = Progress(
            *_unit_columns(),
            console=console,
            transient=transient,
            disable=console is None,
        )

    def __enter__(self) -> "RunProgressUI":
        self._progress.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.stop()

    def add_task(self, *, action: str, label: str, total: int | None) -> ProgressHandle:
        task_id = self._progress.add_task(label, total=total, action=action, state="running")
        return ProgressHandle(task_id=task_id, total=total, label=label)

    def advance(self, handle: ProgressHandle, delta: int = 1) -> None:
        if delta > 0:
            self._progress.advance(handle.task_id, delta)

    def set_state(self, handle: ProgressHandle, state: str) -> None:
        self._progress.update(handle.task_id, state=state)

    def complete(self, handle: ProgressHandle) -> None:
        if handle.total is None:
            self.set_state(handle, "done")
        else:
            self._progress.update(handle.task_id, completed=handle.total, state="done")

    def fail(self, handle: ProgressHandle, message: str = "failed") -> None:
        self.set_state(handle, f"[red]{message}[/red]")


def echo(console: Console | None, *parts: str | tuple[str, str]) -> None:
    """Print a run line from plain strings and `(text, style)` pairs.

    Parts are never parsed as markup, so names coming from the switchboard
    print verbatim. Silent when the run has no console.
    """
    if console is not None:
        console.print(Text.assemble(*parts))
