import logging
import os
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from app import process_opportunity_file
from dimely.config import APP_NAME, LOG_LEVEL

console = Console()

RISK_STYLES = {"low": "green", "medium": "yellow", "high": "bold red"}


def render_result(result: dict) -> None:
    if not result["success"]:
        console.print("[bold red]Processing failed[/bold red]")
        for error in result["errors"]:
            console.print(f"  [red]{error['field']}[/red]: {error['message']}")
        return

    sheet = result["review_sheet"]
    console.print(Panel.fit(sheet["summary"], title=sheet["opportunity_id"], border_style="blue"))

    table = Table(show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Action")
    table.add_column("Description")
    table.add_column("Amount", justify="right")
    table.add_column("Risk")
    table.add_column("Review")
    for index, action in enumerate(sheet["billing_actions"], start=1):
        amount = action.get("amount_in_cents")
        risk = action["risk_level"]
        table.add_row(
            str(index),
            action["type"],
            action["description"],
            f"${amount / 100:,.2f}" if amount is not None else "",
            f"[{RISK_STYLES.get(risk, 'white')}]{risk}[/]",
            "yes" if action["requires_review"] else "",
        )
    console.print(table)

    for warning in result["warnings"] + sheet["warnings"]:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if sheet["manual_review_required"]:
        console.print("[bold yellow]Manual review required before execution[/bold yellow]")


def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    console.print(Panel.fit(f"[bold blue]{APP_NAME}[/bold blue]\n[italic]Opportunity to billing actions[/italic]", border_style="blue"))

    paths = sys.argv[1:]
    if not paths:
        try:
            path = console.input("[bold green]Opportunity file > [/bold green]").strip()
        except (KeyboardInterrupt, EOFError):
            console.print("\n[blue]Goodbye![/blue]")
            return
        if not path:
            return
        paths = [path]

    for path in paths:
        if not os.path.exists(path):
            console.print(f"[bold red]File not found:[/bold red] {path}")
            continue
        console.print(f"\n[bold cyan]Processing[/bold cyan] {path}")
        render_result(process_opportunity_file(path))


if __name__ == "__main__":
    main()
