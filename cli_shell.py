# cli_shell.py
import shlex
from typing import Callable, Dict

import questionary
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import NestedCompleter
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config_manager import DiscoveryMode


class CommandShell:
    """Interactive prompt. Lines starting with '/' are commands, anything else is sent to the channel."""
    def __init__(self, controller, ui, config_path):
        self.controller = controller
        self.ui = ui
        self.config_path = config_path
        self.console = Console()
        self.commands: Dict[str, dict] = {}

        self.register_command("join", self.cmd_join, "Join a channel")
        self.register_command("send", self.cmd_send, "Send a message to the current channel")
        self.register_command("who", self.cmd_who, "Show identity and current channel")
        self.register_command("identity", self.cmd_identity, "Show username and node key")
        self.register_command("metrics", self.cmd_metrics, "Show network health")
        self.register_command("nodes", self.cmd_nodes, "List/add/remove bootstrap nodes, set mix keys")
        self.register_command("mode", self.cmd_mode, "Set discovery mode")
        self.register_command("store", self.cmd_store, "Set store node address")
        self.register_command("save", self.cmd_save, "Persist discovery settings")
        self.register_command("reset-id", self.cmd_reset_id, "Generate a new node key")
        self.register_command("config", self.cmd_config, "Show config file")
        self.register_command("help", self.cmd_help, "Show help")
        self.register_command("clear", self.cmd_clear, "Clear screen")
        self.register_command("exit", self.cmd_exit, "Exit")

    def register_command(self, name: str, func: Callable, help_text: str):
        self.commands[name] = {'func': func, 'help': help_text}

    def _get_completer(self):
        nested = {f"/{name}": None for name in self.commands}
        nested["/nodes"] = {"list": None, "add": None, "remove": None, "mixkey": None}
        nested["/mode"] = {mode.name.lower(): None for mode in DiscoveryMode}
        return NestedCompleter.from_nested_dict(nested)

    async def run(self):
        style = Style.from_dict({'prompt': 'bg:#00aa00 #000000 bold', 'channel': '#00ff00 bold'})
        session = PromptSession(completer=self._get_completer(), style=style)

        self.ui.print_banner()
        self.ui.print_identity()
        self.ui.print_system(f"Config: [bold cyan]{self.config_path}[/]")

        while True:
            try:
                with patch_stdout():
                    channel = self.controller.current_channel or "-"
                    prompt = HTML("<prompt> {} </prompt> <channel>#{}</channel> > ").format(self.controller.username, channel)
                    text = await session.prompt_async(prompt)

                if not text.strip(): continue
                if not text.startswith("/"):
                    await self.cmd_send([text])
                    continue

                parts = shlex.split(text[1:])
                if not parts: continue
                cmd_name = parts[0].lower()
                args = parts[1:]

                if cmd_name in self.commands:
                    await self.commands[cmd_name]['func'](args)
                else:
                    self.console.print(f"[red]❌ Unknown command: '/{cmd_name}'[/]")
            except (KeyboardInterrupt, EOFError): break
            except ValueError as e: self.console.print(f"[red]❌ Parse error: {e}[/]")

    # --- Commands ---
    async def cmd_join(self, args):
        name = args[0] if args else await questionary.text("Channel:").ask_async()
        if not name: return
        if not self.controller.join_channel(name):
            self.console.print(f"[red]❌ Could not join '{name}'[/]")

    async def cmd_send(self, args):
        text = " ".join(args)
        if not self.controller.send_message(text) and text.strip():
            self.console.print("[red]❌ Message not sent (see log)[/]")

    async def cmd_identity(self, args):
        self.ui.print_identity()

    async def cmd_who(self, args):
        self.ui.print_identity()
        self.console.print(f"Channel: [bold]#{self.controller.current_channel or '-'}[/]  Status: [bold]{self.controller.status.value}[/]")

    async def cmd_metrics(self, args):
        self.ui.print_metrics()

    async def cmd_nodes(self, args):
        sub = args[0] if args else "list"
        nodes = self.controller.bootstrap_nodes

        if sub == "list":
            self.ui.print_nodes()

        elif sub == "add":
            address = args[1] if len(args) > 1 else await questionary.text("Address:").ask_async()
            if not address: return
            mix_key = args[2] if len(args) > 2 else ""
            if self.controller.add_bootstrap_node(address, mix_key):
                self.console.print(f"[green]✔ Added {address}[/] [dim](use /save to persist)[/]")
            else:
                self.console.print("[yellow]Not added (empty or duplicate address)[/]")

        elif sub in ("remove", "mixkey"):
            index = await self._pick_node(args[1] if len(args) > 1 else None, nodes)
            if index is None: return
            if sub == "remove":
                ok = self.controller.remove_bootstrap_node(index)
            else:
                key = args[2] if len(args) > 2 else await questionary.text("Mix public key:").ask_async()
                if key is None: return
                ok = self.controller.update_mix_key(index, key)
            self.console.print("[green]✔ Done[/] [dim](use /save to persist)[/]" if ok else "[red]❌ No such node[/]")

        else:
            self.console.print("[yellow]Usage: /nodes [list|add <address> [mixkey]|remove <index>|mixkey <index> <key>][/]")

    async def _pick_node(self, arg, nodes):
        if arg is not None:
            try: return int(arg)
            except ValueError:
                self.console.print("[red]❌ Index must be a number[/]")
                return None
        if not nodes:
            self.console.print("[dim]No bootstrap nodes.[/]")
            return None
        choices = [questionary.Choice(f"{i}: {node.address}", value=i) for i, node in enumerate(nodes)]
        return await questionary.select("Node:", choices=choices).ask_async()

    async def cmd_mode(self, args):
        if args:
            value = args[0]
        else:
            value = await questionary.select("Discovery mode:", choices=[mode.name for mode in DiscoveryMode]).ask_async()
            if not value: return
        self.controller.set_discovery_mode(value)
        self.console.print(f"[green]✔ Discovery mode: {self.controller.discovery_mode.name}[/] [dim](use /save to persist)[/]")

    async def cmd_store(self, args):
        address = args[0] if args else await questionary.text("Store node:", default=self.controller.store_node).ask_async()
        if address is None: return
        self.controller.set_store_node(address)
        self.console.print(f"[green]✔ Store node: {self.controller.store_node or '-'}[/] [dim](use /save to persist)[/]")

    async def cmd_save(self, args):
        try:
            self.controller.save_settings()
            self.console.print("[green]✔ Settings saved[/]")
        except OSError as e:
            self.console.print(f"[red]❌ Could not save settings: {e}[/]")

    async def cmd_reset_id(self, args):
        if await questionary.confirm("Generate a new node key? Peers will see a new identity.", default=False).ask_async():
            self.controller.reset_peer_id()
            self.ui.print_identity()

    async def cmd_config(self, args):
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.console.print(Panel(f.read().strip(), title=f"📄 {self.config_path}", border_style="blue"))
        except OSError as e: self.console.print(f"[red]Error: {e}[/]")

    async def cmd_help(self, args):
        table = Table(title="Available Commands", box=None)
        table.add_column("Command", style="cyan bold"); table.add_column("Description", style="dim")
        for name, data in self.commands.items(): table.add_row(f"/{name}", data['help'])
        self.console.print(table)

    async def cmd_clear(self, args): self.console.clear()
    async def cmd_exit(self, args): self.console.print("[bold red]Bye![/]"); raise EOFError
