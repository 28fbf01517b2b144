import argparse
import asyncio
import logging
import os
import sys

from rich.console import Console

from backend import load_backend
from cli_adapter import ChatPresenter
from cli_shell import CommandShell
from config_manager import Settings, SettingsRegistry
from constants import DEFAULT_CONFIG_PATH
from core_services import SessionController
from logger_config import setup_logging
from settings_store import JsonSettingsStore
from state_manager import SessionStatus

logger = logging.getLogger("Main")
console = Console()


async def run(settings: Settings, config_path: str, verbose: bool):
    ui = ChatPresenter(console=console, dev_mode=verbose)

    try:
        backend = load_backend(settings.backend.factory)
    except (ImportError, AttributeError, ValueError) as e:
        console.print(f"[red]❌ Failed to load backend '{settings.backend.factory}': {e}[/]")
        return 1

    registry = SettingsRegistry(JsonSettingsStore(settings.storage.settings_path), defaults=settings.discovery)
    controller = SessionController(backend, registry, ui=ui, default_channel=settings.chat.default_channel)
    ui.attach(controller)

    try:
        console.print(f"[dim]Starting backend with [bold cyan]{config_path}[/]...[/]")
        if not controller.initialize():
            console.print("[red]❌ Backend failed to initialize, see log for details.[/]")
            return 1
        await CommandShell(controller, ui, config_path).run()
    finally:
        controller.close()
        backend.stop()
        logger.info(f"Session closed (status was {controller.status.value})")

    return 0 if controller.status is SessionStatus.READY else 1


def parse_args():
    parser = argparse.ArgumentParser(description="mixchat: channel chat session client")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging and dev metrics")
    parser.add_argument("-c", "--config", type=str, default=DEFAULT_CONFIG_PATH, help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})")
    return parser.parse_args()


def main():
    args = parse_args()

    if not os.path.exists(args.config):
        console.print(f"[red]❌ Error: Config file '{args.config}' not found.[/]")
        return 1

    try:
        settings = Settings(args.config)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/]")
        return 1

    setup_logging(
        log_filename=settings.logging.file_path,
        debug_mode=args.verbose or settings.logging.debug,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
    )

    try:
        return asyncio.run(run(settings, args.config, args.verbose))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
