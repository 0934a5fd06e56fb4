"""Text-mode status report — Rich console output for ``signalmesh stats``.

Renders the ``/stats`` payload of a running server as panels and a
peer table.  Works in any terminal; colours are dropped when stdout is
not a TTY.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table


def _format_uptime(seconds: float) -> str:
    """Format seconds into human-readable uptime string."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    parts: list[str] = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)


def _format_bytes(n: float) -> str:
    """Format byte count to human readable."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(n) < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"


def _server_section(stats: dict[str, Any], url: str) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column("key", style="bold", min_width=12)
    table.add_column("value")

    table.add_row("Server", url)
    table.add_row("Uptime", _format_uptime(float(stats.get("server_uptime", 0))))
    table.add_row("Known peers", str(stats.get("total_peers", 0)))
    table.add_row("Online peers", f"[green]{stats.get('online_peers', 0)}[/]")
    memory = stats.get("memory_usage") or {}
    if "rss" in memory:
        table.add_row("Memory (RSS)", _format_bytes(memory["rss"]))
    counters = (stats.get("metrics") or {}).get("counters") or {}
    if "signals_relayed_total" in counters:
        table.add_row("Signals relayed", str(int(counters["signals_relayed_total"])))

    return Panel(table, title="[bold]Signaling[/]", border_style="cyan")


def _peers_section(stats: dict[str, Any]) -> Panel:
    peers: list[dict[str, Any]] = stats.get("peers", [])
    if not peers:
        return Panel("[dim]No peers online[/]", title="[bold]Peers[/]")

    table = Table(expand=True, show_edge=False)
    table.add_column("Device", style="bold", no_wrap=True)
    table.add_column("Capabilities")
    table.add_column("Specializations")
    for peer in peers:
        table.add_row(
            str(peer.get("device_id")),
            ", ".join(peer.get("capabilities", [])) or "-",
            ", ".join(peer.get("specializations", [])) or "-",
        )
    return Panel(table, title=f"[bold]Peers ({len(peers)})[/]", border_style="cyan")


def render_stats(stats: dict[str, Any], url: str, console: Console | None = None) -> None:
    """Print the stats report to *console* (stdout by default)."""
    console = console or Console()
    console.print(Group(_server_section(stats, url), _peers_section(stats)))
