"""
Main CLI application using Typer.
"""

import logging
from pathlib import Path
from typing import Annotated, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.memory_store import InMemoryBookingStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import BookingError, ValidationError
from ..domain.models import Source, SourceType, format_time
from ..services.wiring import BookingComponents, build_components

app = typer.Typer(
    name="booked",
    help="Find bookable time slots and manage reservations",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
DataOption = Annotated[
    Optional[Path],
    typer.Option("--data", "-d", help="Booking data YAML file. Overrides data_file from the config."),
]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
):
    """
    Booking availability engine.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _load(config_file: Optional[Path], data_file: Optional[Path]) -> Tuple[AppConfig, Path, BookingComponents]:
    """Load config and data, then wire the services."""
    config_path = config_file or get_default_config_path()
    if config_path.exists():
        config = AppConfig.load_from_yaml(config_path)
    elif config_file is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config = AppConfig()

    data_path = config.resolve_data_file(data_file)
    store = InMemoryBookingStore.from_yaml(data_path)
    return config, data_path, build_components(store, config.settings)


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    if isinstance(exc, ValidationError):
        for field, messages in exc.errors.items():
            for message in messages:
                console.print(f"  [red]{field}[/red]: {message}")
    raise typer.Exit(1)


@app.command()
def slots(
    date: Annotated[str, typer.Argument(help="Date to check (YYYY-MM-DD)")],
    employee: Annotated[Optional[int], typer.Option("--employee", "-e", help="Employee id")] = None,
    location: Annotated[Optional[int], typer.Option("--location", "-l", help="Location id")] = None,
    service: Annotated[Optional[int], typer.Option("--service", "-s", help="Service id")] = None,
    variation: Annotated[Optional[int], typer.Option("--variation", help="Booking variation id")] = None,
    quantity: Annotated[int, typer.Option("--quantity", "-q", help="Number of places needed")] = 1,
    entry: Annotated[Optional[int], typer.Option("--entry", help="Only availabilities of this entry")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
):
    """
    List bookable slots for a date.

    Examples:

        booked slots 2024-01-01

        booked slots 2024-01-01 --variation 2 --quantity 3
    """
    try:
        _, _, components = _load(config_file, data_file)
        source = Source(kind=SourceType.ENTRY, id=entry) if entry is not None else None

        available = components.engine.get_available_slots(
            date,
            employee_id=employee,
            location_id=location,
            service_id=service,
            quantity=quantity,
            variation_id=variation,
            source=source,
        )
    except (FileNotFoundError, ValueError, BookingError) as e:
        _fail(e)

    console.print()
    if not available:
        console.print(f"[yellow]⚠ No bookable slots on {date}.[/yellow]\n")
        return

    table = Table(
        title=f"Bookable slots on {date}",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Start", style="bold yellow")
    table.add_column("End")
    table.add_column("Remaining", justify="right", style="green")
    table.add_column("Employee", style="dim")

    for slot in available:
        table.add_row(
            format_time(slot.start),
            format_time(slot.end),
            str(slot.remaining_capacity),
            str(slot.employee_id) if slot.employee_id is not None else "-",
        )

    console.print(table)
    console.print()


@app.command()
def calendar(
    start: Annotated[str, typer.Argument(help="First date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Argument(help="Last date (YYYY-MM-DD)")],
    employee: Annotated[Optional[int], typer.Option("--employee", "-e", help="Employee id")] = None,
    location: Annotated[Optional[int], typer.Option("--location", "-l", help="Location id")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
):
    """
    Show which days in a range have availability.
    """
    try:
        _, _, components = _load(config_file, data_file)
        summary = components.engine.get_availability_summary(
            start, end, employee_id=employee, location_id=location
        )
    except (FileNotFoundError, ValueError, BookingError) as e:
        _fail(e)

    table = Table(
        title=f"Availability {start} - {end}",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Date", style="bold yellow")
    table.add_column("Availability")
    table.add_column("Blackout")
    table.add_column("Bookable")

    for day, info in summary.items():
        table.add_row(
            f"{day.isoformat()} ({day.strftime('%a')})",
            "yes" if info.has_availability else "no",
            "[red]yes[/red]" if info.is_blacked_out else "no",
            "[green]✓[/green]" if info.is_bookable else "[dim]✗[/dim]",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def book(
    date: Annotated[str, typer.Argument(help="Booking date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    name: Annotated[str, typer.Option("--name", "-n", help="Customer name")],
    email: Annotated[str, typer.Option("--email", help="Customer email")],
    end: Annotated[Optional[str], typer.Option("--end", help="End time (HH:MM). Defaults to the slot duration.")] = None,
    phone: Annotated[Optional[str], typer.Option("--phone", help="Customer phone")] = None,
    employee: Annotated[Optional[int], typer.Option("--employee", "-e", help="Employee id")] = None,
    location: Annotated[Optional[int], typer.Option("--location", "-l", help="Location id")] = None,
    service: Annotated[Optional[int], typer.Option("--service", "-s", help="Service id")] = None,
    variation: Annotated[Optional[int], typer.Option("--variation", help="Booking variation id")] = None,
    quantity: Annotated[int, typer.Option("--quantity", "-q", help="Number of places")] = 1,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes for the owner")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
):
    """
    Create a reservation and save it to the data file.
    """
    try:
        _, data_path, components = _load(config_file, data_file)
        reservation = components.bookings.create_reservation(
            {
                "user_name": name,
                "user_email": email,
                "user_phone": phone,
                "booking_date": date,
                "start_time": start,
                "end_time": end,
                "employee_id": employee,
                "location_id": location,
                "service_id": service,
                "variation_id": variation,
                "quantity": quantity,
                "notes": notes,
            }
        )
        components.store.save_yaml(data_path)
    except (FileNotFoundError, ValueError, BookingError) as e:
        _fail(e)

    console.print(Panel.fit(
        f"[bold green]✓ Reservation created[/bold green]\n\n"
        f"[bold]Date:[/bold] {reservation.booking_date.isoformat()} {reservation.time_range}\n"
        f"[bold]Quantity:[/bold] {reservation.quantity}\n"
        f"[bold]Token:[/bold] {reservation.confirmation_token}",
        title=f"Reservation #{reservation.id}"
    ))


@app.command()
def cancel(
    token: Annotated[str, typer.Argument(help="Confirmation token of the reservation")],
    reason: Annotated[str, typer.Option("--reason", "-r", help="Cancellation reason")] = "",
    config_file: ConfigOption = None,
    data_file: DataOption = None,
):
    """
    Cancel a reservation by its confirmation token.
    """
    try:
        _, data_path, components = _load(config_file, data_file)
        reservation = components.bookings.cancel_by_token(token, reason)
        components.store.save_yaml(data_path)
    except (FileNotFoundError, ValueError, BookingError) as e:
        _fail(e)

    console.print(
        f"\n[green]✓ Reservation #{reservation.id} on {reservation.booking_date.isoformat()} cancelled.[/green]\n"
    )


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]booked[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
