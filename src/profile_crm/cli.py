"""
Command Line Interface for the Profile CRM

Provides commands for managing profiles, logging contacts and handling backups.
"""

from __future__ import annotations

import sys
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator, Optional

import typer
from loguru import logger
from rich import print as rich_print
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .backup.manager import BackupManager
from .config.settings import DEFAULT_CONFIG_FILE, ConfigurationError, Settings, load_settings, save_settings
from .database.duplicates import find_duplicate
from .database.models import NewContact, NewProfile, Profile
from .database.operations import (
    ConstraintViolationError,
    DatabaseError,
    RecordStore,
    create_profile,
    delete_profile,
    get_contact_history,
    get_profile,
    list_profiles,
    log_contact,
    search_profiles,
    update_profile,
)
from .main import CRMApplication, crm_session


# Initialize CLI app
app = typer.Typer(
    name="profile-crm",
    help="Profile CRM - Track contact profiles, log interactions and keep database backups",
    add_completion=False,
    rich_markup_mode="rich"
)

# Initialize console for rich output
console = Console()

# Global state for configuration
config_file: Path = DEFAULT_CONFIG_FILE


@app.callback()
def configure(
    config: Path = typer.Option(DEFAULT_CONFIG_FILE, "--config", "-c", help="Path to the JSON configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging on stderr")
) -> None:
    """Select the configuration file and console log level."""
    global config_file
    config_file = config

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def get_settings() -> Settings:
    """Load settings, exiting with an error message if they are invalid."""
    try:
        return load_settings(config_file)
    except ConfigurationError as e:
        rich_print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)


@contextmanager
def open_session() -> Iterator[CRMApplication]:
    """Start the application for one command; no shutdown backup is taken."""
    settings = get_settings().with_overrides(backup_on_close=False)
    try:
        with crm_session(settings, configure_logging=False) as application:
            yield application
    except DatabaseError as e:
        rich_print(f"[red]Database error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def require_store(application: CRMApplication) -> RecordStore:
    if application.store is None:
        rich_print("[red]Database is not open[/red]")
        raise typer.Exit(1)
    return application.store


def require_backup_manager(application: CRMApplication) -> BackupManager:
    if application.backup_manager is None:
        rich_print("[yellow]Backups are disabled in the configuration.[/yellow]")
        raise typer.Exit(1)
    return application.backup_manager


def profiles_table(profiles: list[Profile], title: str) -> Table:
    """Build a rich table listing profiles."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name", style="green")
    table.add_column("Company")
    table.add_column("Role")
    table.add_column("Email")
    table.add_column("Phone")
    table.add_column("Status", style="yellow")

    for profile in profiles:
        table.add_row(
            str(profile.id),
            f"{profile.first_name} {profile.last_name}",
            profile.company,
            profile.role or "",
            profile.email or "",
            profile.phone or "",
            profile.status
        )
    return table


@app.command()
def init(
    database: Optional[Path] = typer.Option(None, "--database", help="SQLite database file"),
    backup_dir: Optional[Path] = typer.Option(None, "--backup-dir", help="Directory for backups"),
    retention: Optional[int] = typer.Option(None, "--retention", help="Number of backups to keep"),
    strategy: Optional[str] = typer.Option(None, "--strategy", help="Backup strategy: copy or dump"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing configuration")
) -> None:
    """Write the configuration file and create the database."""
    rich_print("\n[bold blue]Profile CRM Setup[/bold blue]")

    if config_file.exists() and not force:
        rich_print(f"[yellow]Configuration already exists at {config_file}. Use --force to overwrite.[/yellow]")
        settings = get_settings()
    else:
        try:
            settings = get_settings().with_overrides(
                database_path=database,
                backup_directory=backup_dir,
                retention_count=retention,
                backup_strategy=strategy
            )
            save_settings(settings, config_file)
        except (ValueError, ConfigurationError) as e:
            rich_print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
            raise typer.Exit(1)
        rich_print(f"[green]Configuration saved to {config_file}[/green]")

    with open_session():
        pass
    rich_print(f"[green]Database ready at {settings.database_path}[/green]")


@app.command()
def add(
    first_name: str = typer.Argument(..., help="First name"),
    last_name: str = typer.Argument(..., help="Last name"),
    status: str = typer.Option("Lead", "--status", "-s", help="Status label, e.g. Lead, Customer, Inactive"),
    company: Optional[str] = typer.Option(None, "--company", help="Company"),
    email: Optional[str] = typer.Option(None, "--email", help="Email address"),
    phone: Optional[str] = typer.Option(None, "--phone", help="Phone number"),
    address: Optional[str] = typer.Option(None, "--address", help="Postal address"),
    role: Optional[str] = typer.Option(None, "--role", help="Role at the company"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Free-form notes")
) -> None:
    """Create a new profile, refusing exact duplicates."""
    with open_session() as application:
        store = require_store(application)

        duplicate = find_duplicate(store, first_name, last_name, company)
        if duplicate is not None:
            rich_print(
                f"[red]Profile already exists: ID {duplicate.id} "
                f"({duplicate.first_name} {duplicate.last_name}, {duplicate.company or 'no company'})[/red]"
            )
            raise typer.Exit(1)

        try:
            profile_id = create_profile(store, NewProfile(
                first_name=first_name,
                last_name=last_name,
                status=status,
                company=company,
                email=email,
                phone=phone,
                address=address,
                role=role,
                notes=notes
            ))
        except (ValueError, ConstraintViolationError) as e:
            rich_print(f"[red]Failed to create profile: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    rich_print(f"[green]Created profile ID {profile_id}: {first_name} {last_name}[/green]")


@app.command("list")
def list_command() -> None:
    """List all profiles, newest first."""
    with open_session() as application:
        profiles = list_profiles(require_store(application))

    if not profiles:
        rich_print("[yellow]No profiles yet.[/yellow]")
        return
    console.print(profiles_table(profiles, f"Profiles ({len(profiles)})"))


@app.command()
def search(term: str = typer.Argument(..., help="Text to search for")) -> None:
    """Search profiles by name, company, email or status."""
    with open_session() as application:
        profiles = search_profiles(require_store(application), term)

    if not profiles:
        rich_print(f"[yellow]No profiles match '{term}'.[/yellow]")
        return
    console.print(profiles_table(profiles, f"Search: {term}"))


@app.command()
def show(
    profile_id: int = typer.Argument(..., help="Profile ID"),
    ascending: bool = typer.Option(False, "--ascending", help="Oldest contacts first")
) -> None:
    """Show a profile with its contact history."""
    with open_session() as application:
        store = require_store(application)
        profile = get_profile(store, profile_id)
        if profile is None:
            rich_print(f"[red]Profile {profile_id} not found[/red]")
            raise typer.Exit(1)
        contacts = get_contact_history(store, profile_id, descending=not ascending)

    details = Table(title=f"{profile.first_name} {profile.last_name}", show_header=True, header_style="bold magenta")
    details.add_column("Field", style="cyan")
    details.add_column("Value", style="green")
    for field_name in ("company", "role", "email", "phone", "address", "status", "notes", "created_at"):
        details.add_row(field_name.replace("_", " ").title(), str(getattr(profile, field_name) or ""))
    console.print(details)

    if not contacts:
        rich_print("[yellow]No contacts logged.[/yellow]")
        return

    history = Table(title="Contact History", show_header=True, header_style="bold magenta")
    history.add_column("Date", style="cyan")
    history.add_column("Type", style="yellow")
    history.add_column("Details")
    history.add_column("Value (EUR)", justify="right", style="green")
    for contact in contacts:
        history.add_row(contact.date, contact.type, contact.details, f"{contact.value_eur:.2f}")
    console.print(history)


@app.command()
def update(
    profile_id: int = typer.Argument(..., help="Profile ID"),
    first_name: Optional[str] = typer.Option(None, "--first-name"),
    last_name: Optional[str] = typer.Option(None, "--last-name"),
    company: Optional[str] = typer.Option(None, "--company"),
    email: Optional[str] = typer.Option(None, "--email"),
    phone: Optional[str] = typer.Option(None, "--phone"),
    address: Optional[str] = typer.Option(None, "--address"),
    role: Optional[str] = typer.Option(None, "--role"),
    status: Optional[str] = typer.Option(None, "--status"),
    notes: Optional[str] = typer.Option(None, "--notes")
) -> None:
    """Change selected fields of a profile."""
    updates = {
        key: value for key, value in {
            "first_name": first_name,
            "last_name": last_name,
            "company": company,
            "email": email,
            "phone": phone,
            "address": address,
            "role": role,
            "status": status,
            "notes": notes,
        }.items()
        if value is not None
    }
    if not updates:
        rich_print("[yellow]Nothing to update.[/yellow]")
        return

    with open_session() as application:
        try:
            affected = update_profile(require_store(application), profile_id, updates)
        except ConstraintViolationError as e:
            rich_print(f"[red]Update rejected: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    if affected == 0:
        rich_print(f"[red]Profile {profile_id} not found[/red]")
        raise typer.Exit(1)
    rich_print(f"[green]Updated profile {profile_id}: {', '.join(sorted(updates))}[/green]")


@app.command()
def delete(
    profile_id: int = typer.Argument(..., help="Profile ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt")
) -> None:
    """Delete a profile together with its contact history."""
    if not yes and not typer.confirm(f"Delete profile {profile_id} and all of its contacts?"):
        rich_print("[yellow]Delete cancelled.[/yellow]")
        return

    with open_session() as application:
        affected = delete_profile(require_store(application), profile_id)

    if affected == 0:
        rich_print(f"[red]Profile {profile_id} not found[/red]")
        raise typer.Exit(1)
    rich_print(f"[green]Deleted profile {profile_id}[/green]")


@app.command("log")
def log_command(
    profile_id: int = typer.Argument(..., help="Profile ID"),
    contact_type: str = typer.Option("Call", "--type", "-t", help="Call, Email, Meeting, Offer Submission, ..."),
    details: str = typer.Option(..., "--details", "-d", help="What happened (max 300 characters)"),
    contact_date: Optional[str] = typer.Option(None, "--date", help="Contact date (default: today)"),
    value: Optional[float] = typer.Option(None, "--value", help="Associated value in EUR")
) -> None:
    """Log a contact with a profile."""
    with open_session() as application:
        try:
            contact_id = log_contact(require_store(application), NewContact(
                profile_id=profile_id,
                date=contact_date or date.today().isoformat(),
                type=contact_type,
                details=details,
                value_eur=value
            ))
        except ConstraintViolationError as e:
            rich_print(f"[red]Contact rejected: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    rich_print(f"[green]Logged contact ID {contact_id} for profile {profile_id}[/green]")


@app.command()
def backup() -> None:
    """Create a database backup now and apply the retention policy."""
    with open_session() as application:
        manager = require_backup_manager(application)
        backup_file = manager.create_backup()

    rich_print(f"[green]Backup created: {backup_file}[/green]")


@app.command()
def backups() -> None:
    """List existing backups, newest first."""
    with open_session() as application:
        infos = require_backup_manager(application).list_backups()

    if not infos:
        rich_print("[yellow]No backups found.[/yellow]")
        return

    table = Table(title="Backups", show_header=True, header_style="bold magenta")
    table.add_column("File", style="cyan")
    table.add_column("Created (UTC)", style="green")
    table.add_column("Strategy")
    table.add_column("Size", justify="right")
    table.add_column("Checksum")
    for info in infos:
        table.add_row(
            info.filename,
            info.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            info.strategy,
            f"{info.size_bytes / 1024:.1f} KB",
            f"{info.checksum[:16]}..."
        )
    console.print(table)


@app.command()
def restore(
    backup_file: Path = typer.Argument(..., help="Backup file to restore"),
    target: Path = typer.Argument(..., help="Database file to write")
) -> None:
    """Rebuild a database file from a backup."""
    settings = get_settings()
    if target.resolve() == Path(settings.database_path).resolve():
        rich_print("[red]Refusing to restore over the configured live database; choose another target.[/red]")
        raise typer.Exit(1)

    with open_session() as application:
        manager = require_backup_manager(application)
        try:
            restored = manager.restore_backup(backup_file, target)
        except FileNotFoundError as e:
            rich_print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)

    rich_print(f"[green]Restored {backup_file} to {restored}[/green]")


def main() -> None:
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
