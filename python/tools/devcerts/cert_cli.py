#!/usr/bin/env python3
"""
Development certificate command-line interface using Typer.
"""

import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from .cert_config import ConfigManager
from .cert_manager import CertificateManager, create_certificate_manager
from .cert_types import (
    CertificateError,
    CertificateKeyExportFormat,
    EnsureCertificateResult,
    StoreLocation,
    StoreName,
)

app = typer.Typer(
    name="devcerts",
    help="HTTPS Development Certificate Tool",
    add_completion=False,
)
console = Console()

_RESULT_MESSAGES = {
    EnsureCertificateResult.SUCCEEDED: "The HTTPS developer certificate was generated successfully.",
    EnsureCertificateResult.VALID_CERTIFICATE_PRESENT: "A valid HTTPS certificate is already present.",
    EnsureCertificateResult.EXISTING_HTTPS_CERTIFICATE_TRUSTED: "Successfully trusted the existing HTTPS certificate.",
    EnsureCertificateResult.NEW_HTTPS_CERTIFICATE_TRUSTED: "Successfully created and trusted a new HTTPS certificate.",
    EnsureCertificateResult.ERROR_CREATING_THE_CERTIFICATE: "There was an error creating the HTTPS developer certificate.",
    EnsureCertificateResult.ERROR_SAVING_THE_CERTIFICATE_INTO_THE_CURRENT_USER_PERSONAL_STORE: "There was an error saving the HTTPS developer certificate to the current user personal certificate store.",
    EnsureCertificateResult.ERROR_EXPORTING_THE_CERTIFICATE: "There was an error exporting the HTTPS developer certificate to a file.",
    EnsureCertificateResult.FAILED_TO_TRUST_THE_CERTIFICATE: "There was an error trusting the HTTPS developer certificate.",
    EnsureCertificateResult.PARTIALLY_FAILED_TO_TRUST_THE_CERTIFICATE: "The HTTPS developer certificate was only partially trusted.",
    EnsureCertificateResult.USER_CANCELLED_TRUST_STEP: "The user cancelled the trust step.",
    EnsureCertificateResult.FAILED_TO_MAKE_KEY_ACCESSIBLE: "Failed to make the HTTPS developer certificate key accessible.",
}


def setup_logger(debug: bool):
    """Configures the logger based on debug flag."""
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    )


def get_manager(ctx: typer.Context) -> CertificateManager:
    """Builds the platform certificate manager from the configured settings."""
    try:
        settings = ConfigManager(config_path=ctx.meta.get("config_path")).load_settings()
        return create_certificate_manager(settings)
    except CertificateError as e:
        console.print(f"[red]✘[/red] {e}")
        raise typer.Exit(code=1)


def report_outcome(result: EnsureCertificateResult, error: Optional[Exception]) -> None:
    """Prints an ensure outcome and exits nonzero for failures."""
    message = _RESULT_MESSAGES[result]
    if not result.is_error:
        console.print(f"[green]✔[/green] {message}")
        return
    console.print(f"[red]✘[/red] {message}")
    if error is not None:
        console.print(f"  {error}")
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config file."),
):
    """Manage the HTTPS development certificate."""
    setup_logger(debug)
    ctx.meta["config_path"] = config


@app.command()
def create(
    ctx: typer.Context,
    trust: bool = typer.Option(False, "--trust", help="Trust the certificate."),
    export_path: Optional[Path] = typer.Option(None, "--export-path", help="Export the certificate to this path."),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Password protecting the exported private key."),
    no_password: bool = typer.Option(False, "--no-password", help="Export the private key without a password."),
    export_format: CertificateKeyExportFormat = typer.Option(CertificateKeyExportFormat.PFX, "--format", help="Export format."),
    no_interactive: bool = typer.Option(False, "--no-interactive", help="Never prompt for key access."),
):
    """Ensure a valid development certificate exists."""
    if password is not None and no_password:
        raise typer.BadParameter("--password and --no-password cannot be used together")
    if (password is not None or no_password) and export_path is None:
        raise typer.BadParameter("--export-path is required to export the private key")

    manager = get_manager(ctx)
    outcome = manager.ensure_development_certificate(
        path=export_path,
        trust=trust,
        include_private_key=password is not None or no_password,
        password=password,
        key_export_format=export_format,
        is_interactive=not no_interactive,
    )
    report_outcome(outcome.result, outcome.error)
    if outcome.certificate is not None:
        console.print(f"Thumbprint: [bold cyan]{outcome.certificate.thumbprint}[/bold cyan]")
    if export_path is not None:
        console.print(f"[green]✔[/green] Exported to: {export_path}")


@app.command()
def check(
    ctx: typer.Context,
    trust: bool = typer.Option(False, "--trust", help="Also require the certificate to be trusted."),
):
    """Check for a valid development certificate."""
    manager = get_manager(ctx)
    certificates = manager.list_certificates(
        StoreName.MY, StoreLocation.CURRENT_USER, is_valid=True
    )
    if not certificates:
        console.print("[yellow]No valid certificate found.[/yellow]")
        raise typer.Exit(code=1)

    for description in manager.to_certificate_descriptions(certificates):
        console.print(description, soft_wrap=True)

    status = manager.check_certificate_state(certificates[0], False)
    if not status.success:
        console.print(f"[yellow]WARNING[/yellow]: {status.failure_message}")

    if trust:
        trusted = [c for c in certificates if manager.is_trusted(c)]
        if not trusted:
            console.print("[yellow]The certificate is not trusted.[/yellow]")
            raise typer.Exit(code=1)
        console.print(f"[green]✔[/green] A trusted certificate was found: {trusted[0].thumbprint}")


@app.command("trust")
def trust_command(ctx: typer.Context):
    """Ensure a development certificate exists and trust it."""
    manager = get_manager(ctx)
    outcome = manager.ensure_development_certificate(trust=True)
    report_outcome(outcome.result, outcome.error)


@app.command()
def clean(ctx: typer.Context):
    """Remove every development certificate."""
    manager = get_manager(ctx)
    console.print("Cleaning HTTPS development certificates from the machine...")
    try:
        manager.clean_certificates()
    except (CertificateError, OSError) as e:
        console.print(f"[red]✘[/red] There was an error trying to clean HTTPS development certificates: {e}")
        raise typer.Exit(code=1)
    console.print("[green]✔[/green] HTTPS development certificates successfully removed from the machine.")


@app.command("list")
def list_command(
    ctx: typer.Context,
    store: str = typer.Option("My", "--store", help="Store name (My or Root)."),
    location: str = typer.Option("CurrentUser", "--location", help="Store location (CurrentUser or LocalMachine)."),
    include_invalid: bool = typer.Option(False, "--all", help="Include expired and unsupported certificates."),
):
    """List development certificates in a store."""
    try:
        store_name = StoreName.from_string(store)
        store_location = StoreLocation.from_string(location)
    except KeyError:
        raise typer.BadParameter(f"Unknown store '{store}' or location '{location}'") from None

    manager = get_manager(ctx)
    certificates = manager.list_certificates(
        store_name, store_location, is_valid=not include_invalid
    )

    table = Table(title=f"{store_location.value}\\{store_name.value}")
    table.add_column("Thumbprint", style="cyan")
    table.add_column("Subject")
    table.add_column("Not After")
    table.add_column("Version", justify="right")
    table.add_column("Trusted")
    for certificate in certificates:
        table.add_row(
            certificate.thumbprint,
            certificate.subject,
            f"{certificate.not_after:%Y-%m-%d}",
            str(certificate.version),
            "yes" if manager.is_trusted(certificate) else "no",
        )
    console.print(table)


if __name__ == "__main__":
    app()
