"""Configuration Commands - Where the CLI finds the sidecar and which tenant it acts as"""

from typing import Any

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


def _coerce(key: str, value: str) -> Any:
    """Validate a value for a known key and convert it to the stored type."""
    if key == "api.base_url":
        if not value.startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://")
        return value.rstrip("/")

    if key == "api.tenant_id":
        if not value.strip():
            raise ValueError("Tenant ID cannot be empty")
        return value.strip()

    if key in ("api.timeout", "display.jobs_per_page"):
        if not value.isdigit() or int(value) < 1:
            raise ValueError(f"{key} must be a positive whole number")
        return int(value)

    raise ValueError(f"Unknown configuration key: {key}")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.tenant_id')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    try:
        config.set(key, _coerce(key, value))
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1) from None
    except OSError as e:
        print_error(f"Failed to write {config.config_file}: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {value}")

    if key == "api.base_url":
        print_info("Test connection with: jobengine status")
    elif key == "api.tenant_id":
        print_info("Jobs commands now send X-Tenant-ID: " + value.strip())


@app.command("get")
def get_config(
    key: str = typer.Argument(..., help="Configuration key"),
):
    """📋 Get a configuration value"""
    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not set[/yellow]")
        console.print("Use [cyan]jobengine config show[/cyan] to see all keys")
        return

    console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show all configuration settings"""
    console.print(
        Panel(
            yaml.safe_dump(config.load_config(), default_flow_style=False).strip(),
            title=f"Configuration ({config.config_file})",
            border_style="blue",
        )
    )


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask("⚠️ Reset the API URL, tenant and display settings?"):
        console.print("Configuration reset cancelled.")
        return

    config.reset()
    print_success("Configuration reset to defaults")
