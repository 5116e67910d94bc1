"""
MODULE OVERVIEW:
The Rich terminal dashboard for a live stream.

WHAT IS HAPPENING HERE:
We hook into the stream's callbacks, start it in the background and redraw a Rich
Layout a few times per second: the latest messages on the left, counters and a status
timeline on the right. The dashboard only displays what arrives; it never looks inside
a message beyond picking a short label for the table.
"""

import asyncio
import json
from collections import deque
from datetime import datetime

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from mtgox_stream.client.stream_client import MtGoxStream


def message_label(payload) -> str:
    if isinstance(payload, dict):
        return str(payload.get("op") or payload.get("channel") or "object")
    return type(payload).__name__


class Visualizer:
    def __init__(self, stream: MtGoxStream):
        self.stream = stream
        self.recent_messages = deque(maxlen=10)
        self.status = "INITIALIZING"
        self.timeline = deque(maxlen=6)
        self.outcome: str | None = None

    def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {status}")

    def on_message(self, payload):
        ts = datetime.now().strftime("%H:%M:%S")
        text = json.dumps(payload, default=str)
        preview = text[:60] + "..." if len(text) > 60 else text
        self.recent_messages.appendleft((ts, message_label(payload), preview))

    def on_error(self, message: str):
        self.outcome = f"Error: {message}"

    def on_disconnect(self):
        self.outcome = "Disconnected"

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        color = "green" if "ACTIVE" in self.status else "yellow" if self.outcome is None else "red"
        session = self.stream.session_id or "-"
        layout["header"].update(Panel(f"[{color} bold]{self.stream.host} | Session: {session} | Status: {self.status}[/]", style=color))

        table = Table(title="Live Message Feed", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Kind", style="magenta")
        table.add_column("Payload", style="green")

        for m in self.recent_messages:
            table.add_row(*m)

        layout["left"].update(Panel(table, title="Feed"))

        stats = self.stream.stats
        stats_text = (
            f"Frames Received: {stats['frames_received']}\n"
            f"Messages: {self.stream.messages_delivered}\n"
            f"Heartbeats Sent: {self.stream.heartbeats_sent}\n"
            f"Invalid JSON: {stats['json_errors']}\n"
            f"Bytes Received: {stats['bytes_received']}"
        )
        if self.outcome:
            stats_text += f"\n\n[red]{self.outcome}[/]"
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float = 0.0) -> bool:
        """Runs until the stream ends or `duration_s` elapses (0 = no limit). True on a clean stop."""
        self.stream.set_callbacks(
            on_message=self.on_message,
            on_error=self.on_error,
            on_disconnect=self.on_disconnect,
            on_status_change=self.on_status_change,
        )
        handle = self.stream.start()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s if duration_s else None

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not handle.done:
                if deadline is not None and loop.time() >= deadline:
                    break
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
            await handle.aclose()
            live.update(self.generate_layout())

        return self.outcome is None
