import os

import psutil
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from events import SessionObserver
from utility import format_bytes, short_key


class ResourceMonitor:
    """CPU & RAM usage of this process, for the dev-mode metrics report."""
    def __init__(self, pid=None):
        self.process = psutil.Process(pid or os.getpid())
        # First call primes the CPU counter
        try: self.process.cpu_percent(interval=None)
        except (psutil.NoSuchProcess, psutil.AccessDenied): pass

    def snapshot(self):
        try:
            with self.process.oneshot():
                return {
                    'cpu': self.process.cpu_percent(interval=None),
                    'memory': self.process.memory_info().rss,
                    'threads': self.process.num_threads(),
                }
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None


class ChatPresenter(SessionObserver):
    """Prints controller state changes to the terminal."""
    def __init__(self, console=None, dev_mode=False):
        self.console = console if console else Console()
        self.dev_mode = dev_mode
        self.controller = None
        self.monitor = ResourceMonitor() if dev_mode else None
        self._printed = 0

    def attach(self, controller):
        self.controller = controller

    def on_property_changed(self, name):
        if self.controller is None:
            return
        c = self.controller

        if name == "messages":
            self._print_new_messages()
        elif name == "status":
            self.print_system(f"Status: [bold]{c.status.value}[/]")
        elif name == "current_channel":
            self.print_system(f"Channel: [bold green]#{escape(c.current_channel)}[/]")
        elif name == "poll_interval_ms":
            self.print_system(f"Network stable, metrics every {c.poll_interval_ms // 1000}s")
        elif name == "restart_required" and c.restart_required:
            self.console.print("[yellow]⚠ Restart required for the backend to pick up the change[/]")
        elif name in ("mixnode_pool_size", "lightpush_peers_count") and self.dev_mode:
            self.console.print(f"[dim]metrics: mixnodes={c.mixnode_pool_size} lightpush={c.lightpush_peers_count}[/]")

    def _print_new_messages(self):
        messages = self.controller.messages
        # Log was cleared by a channel join
        if len(messages) < self._printed:
            self._printed = 0
        for message in messages[self._printed:]:
            self.print_message(message)
        self._printed = len(messages)

    def print_message(self, message):
        text = escape(message.text)
        if message.is_system:
            self.console.print(f"[italic dim]{text}[/]")
        elif message.is_history:
            self.console.print(f"[dim][{message.timestamp}] {escape(message.sender)}: {text}[/]")
        else:
            self.console.print(f"[dim][{message.timestamp}][/] [bold cyan]{escape(message.sender)}[/]: {text}")

    def print_system(self, msg):
        self.console.print(f"[bold cyan]ℹ️  System:[/] {msg}")

    def print_metrics(self):
        c = self.controller
        grid = Table.grid(padding=(0, 2))
        grid.add_column(justify="right", style="dim")
        grid.add_column()
        grid.add_row("Mixnode pool:", str(c.mixnode_pool_size))
        grid.add_row("Lightpush peers:", str(c.lightpush_peers_count))
        grid.add_row("Poll interval:", f"{c.poll_interval_ms} ms ({c.poller.state})")

        if self.monitor:
            stats = self.monitor.snapshot()
            if stats:
                grid.add_row("Process CPU:", f"{stats['cpu']:.1f}%")
                grid.add_row("Process RAM:", format_bytes(stats['memory']))
                grid.add_row("Threads:", str(stats['threads']))

        self.console.print(Panel(grid, title="Network health", border_style="cyan", box=box.ROUNDED, expand=False))

    def print_identity(self):
        c = self.controller
        self.console.print(f"Username: [bold green]{escape(c.username)}[/]")
        self.console.print(f"Node key: [dim]{short_key(c.node_key)}[/]")

    def print_nodes(self):
        c = self.controller
        table = Table(show_header=True, header_style="bold magenta", box=box.SIMPLE)
        table.add_column("#", width=3)
        table.add_column("Address", style="green")
        table.add_column("Mix key", style="yellow")
        for i, node in enumerate(c.bootstrap_nodes):
            table.add_row(str(i), escape(node.address), short_key(node.mix_pub_key) or "-")
        self.console.print(f"Discovery mode: [bold]{c.discovery_mode.name}[/]   Store node: [bold]{escape(c.store_node) or '-'}[/]")
        if c.bootstrap_nodes:
            self.console.print(table)
        else:
            self.console.print("[dim]No bootstrap nodes.[/]")

    def print_banner(self):
        art = """
   .-.  .-.
  ( o )( o )   [bold green]mixchat[/]
   `-'  `-'    [dim]channel chat over a mixnet[/]
    """
        self.console.print(Panel(art, border_style="green", expand=False))
