from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from questlog.application.services.quest_log_service import QuestLogService
from questlog.domain.models.quest import BUCKET_ORDER

_BORDER_QUESTS = "magenta"

_STATUS_STYLES = {
    "active": "bold green",
    "available": "cyan",
    "completed": "dim",
    "failed": "red",
    "hidden": "bright_black",
}


def build_quest_table(service: QuestLogService) -> Table:
    table = Table(show_header=True, header_style="bold yellow")
    table.add_column("Status")
    table.add_column("Quest")
    table.add_column("Giver")
    table.add_column("Tasks", justify="right")
    table.add_column("Id")

    classification = service.get_classification()
    for status in BUCKET_ORDER:
        style = _STATUS_STYLES.get(status.value, "")
        for quest_id in classification.bucket(status):
            view = service.get_quest_view(quest_id)
            if view is None:
                continue
            title = f"* {view.title}" if view.is_primary else view.title
            table.add_row(
                f"[{style}]{status.value.title()}[/{style}]" if style else status.value.title(),
                title,
                view.giver_name or "-",
                f"{view.tasks_done}/{view.tasks_total}",
                view.id,
            )
    return table


def render_quest_log(service: QuestLogService, console: Console | None = None) -> None:
    console = console or Console()
    counts = service.get_counts()
    subtitle = " · ".join(f"{name} {count}" for name, count in counts.items())
    console.print(
        Panel.fit(
            build_quest_table(service),
            title="[bold yellow]Quest Log[/bold yellow]",
            subtitle=f"[dim]{subtitle}[/dim]",
            border_style=_BORDER_QUESTS,
        )
    )
