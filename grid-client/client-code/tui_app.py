"""Textual TUI application for the Grid Monitor."""

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.message import Message
from textual.widgets import Header, Footer, Input, RichLog, DataTable, Static
from textual import work, on

from grid_client import GridClient, GridClientError
from poll_scheduler import PollScheduler

# Rich styles per classification label (presentation only)
LABEL_STYLES = {
    "NORMAL": "green",
    "LOW": "yellow",
    "VERY_LOW": "red",
    "OUTAGE": "bold red",
    "OFFLINE": "blue",
}


class GridMonitorApp(App):
    """Textual TUI for the Grid Monitor."""

    TITLE = "Grid Monitor"

    CSS = """
    #sidebar {
        width: 30;
        dock: left;
        border-right: solid $accent;
        padding: 1;
        background: $surface;
    }
    #log {
        height: 1fr;
        border: solid $primary;
    }
    #nodes-table {
        height: auto;
        max-height: 14;
        border: solid $primary;
    }
    #cmd-input {
        dock: bottom;
    }
    """

    BINDINGS = [
        ("f2", "toggle_debug", "Debug"),
        ("f3", "clear_log", "Clear"),
        ("f5", "refresh", "Refresh"),
        ("escape", "focus_input", "Input"),
    ]

    # ---- Custom Messages ----

    class ViewMsg(Message):
        """A poll cycle published a new view."""
        def __init__(self, view):
            super().__init__()
            self.view = view

    class LogMsg(Message):
        """Generic log line for the RichLog panel."""
        def __init__(self, text: str, style: str = ""):
            super().__init__()
            self.text = text
            self.style = style

    # ---- Init ----

    def __init__(self, client: GridClient, scheduler: PollScheduler,
                 web_port: int = None):
        super().__init__()
        self.client = client
        self.client.app = self  # Back-reference for log routing
        self.scheduler = scheduler
        self.web_port = web_port  # Serve the web dashboard API too when set
        self.debug_mode = False
        self.scheduler.add_listener(self._on_view)

    def _on_view(self, view) -> None:
        self.post_message(self.ViewMsg(view))

    # ---- Layout ----

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield Static("Waiting for first poll...", id="sidebar")
            yield RichLog(id="log", wrap=True, highlight=True, markup=True)
        yield DataTable(id="nodes-table")
        yield Input(placeholder="Enter command (type 'help' for list)", id="cmd-input")
        yield Footer()

    def on_mount(self) -> None:
        """Initialize table and start polling."""
        table = self.query_one("#nodes-table", DataTable)
        table.add_columns("ID", "Region", "Voltage", "Power", "Link", "State", "Verify")
        table.cursor_type = "none"
        self.query_one("#cmd-input", Input).focus()
        self.start_polling()
        if self.web_port:
            self.serve_web()

    @work(exclusive=True, group="poll")
    async def start_polling(self) -> None:
        """Run the scheduler's tick loop on the app's event loop."""
        await self.scheduler.run()

    @work(exclusive=True, group="web")
    async def serve_web(self) -> None:
        """Serve the web dashboard API on the app's event loop."""
        import uvicorn
        import web_server

        config = uvicorn.Config(
            web_server.app, host="0.0.0.0", port=self.web_port,
            log_level="warning")
        self.log_message(f"[WEB] Dashboard API on http://0.0.0.0:{self.web_port}/api/state")
        await uvicorn.Server(config).serve()

    # ---- Command Handling ----

    @on(Input.Submitted, "#cmd-input")
    def on_cmd_submitted(self, event: Input.Submitted) -> None:
        """Handle command input."""
        cmd = event.value.strip()
        event.input.value = ""
        if cmd:
            self.log_message(f"> {cmd}", style="bold cyan")
            self.dispatch_command(cmd)

    @work(exclusive=True, group="cmd")
    async def dispatch_command(self, cmd: str) -> None:
        """Parse and execute a user command."""
        sched = self.scheduler
        parts = cmd.split()
        verb = parts[0].lower()
        try:
            if verb in ['q', 'quit', 'exit']:
                await sched.stop()
                self.exit()

            elif verb in ['connect', 'disconnect', 'reconnect',
                          'outage_start', 'outage_end', 'low_voltage']:
                await sched.request_action(verb)

            elif verb == 'outage':
                if len(parts) < 2 or parts[1].lower() not in ('start', 'end'):
                    self.log_message("Usage: outage start|end")
                    return
                await sched.request_action(f"outage_{parts[1].lower()}")

            elif verb in ['v', 'verify']:
                if len(parts) < 2:
                    self.log_message("Usage: verify <node_id>")
                    return
                status = await sched.request_verification(parts[1])
                self.notify(f"Verification request sent to {parts[1]} ({status.value}). "
                            f"Waiting for client report...", severity="information")

            elif verb in ['voltage', 'volt']:
                if len(parts) < 2:
                    self.log_message("Usage: voltage <volts>")
                    return
                await sched.set_voltage(float(parts[1]))

            elif verb == 'configure':
                if len(parts) < 2:
                    self.log_message("Usage: configure <node_id> [region]")
                    return
                region = " ".join(parts[2:]) or "Unknown"
                await sched.configure(parts[1], region)
                self.notify(f"Configured as {parts[1]} ({region})", severity="information")

            elif verb in ['status', 'nodes']:
                self.log_message(sched.summary())

            elif verb in ['r', 'refresh']:
                self.action_refresh()

            elif verb in ['d', 'debug']:
                self.action_toggle_debug()

            elif verb in ['clear', 'cls']:
                self.action_clear_log()

            elif verb == 'help':
                self._show_help()

            else:
                self.log_message("Unknown command. Type 'help' for list.")

        except (ValueError, IndexError):
            self.log_message("Invalid value or missing argument")
        except GridClientError as e:
            self.log_message(f"Error: {e}", style="bold red")
            self.notify(str(e), title="Request failed", severity="error")

        self.update_status()

    # ---- Message Handlers ----
    # Textual auto-discovers handlers named on_<namespace>_<message_name>
    # where namespace = snake_case of outermost widget class.

    def on_grid_monitor_app_view_msg(self, msg: ViewMsg) -> None:
        """New poll result: refresh table, sidebar, and raise trigger alerts."""
        view = msg.view
        if view.online:
            self._update_node_table(view)
        for ev in view.events:
            # One-shot interrupt: each trigger line arrives here exactly once
            self.notify(ev.text, title=f"{ev.node_id}: HQ inquiry",
                        severity="warning", timeout=15)
        self.update_status()

    def on_grid_monitor_app_log_msg(self, msg: LogMsg) -> None:
        """Handle generic log messages."""
        log = self.query_one("#log", RichLog)
        if msg.style:
            log.write(f"[{msg.style}]{msg.text}[/{msg.style}]")
        else:
            log.write(msg.text)

    # ---- UI Updates ----

    def _update_node_table(self, view) -> None:
        """Update or insert one row per node; drop rows for vanished nodes."""
        table = self.query_one("#nodes-table", DataTable)
        present = set()
        for nv in view.nodes:
            row_key = f"node_{nv.node_id}"
            present.add(row_key)
            style = LABEL_STYLES.get(nv.label.value, "")
            verify = nv.verification.value
            if nv.verify_available:
                verify += " (verify?)"
            row_data = [
                nv.node_id,
                nv.region,
                f"{nv.voltage:.1f}V",
                nv.power_state,
                "ONLINE" if nv.connected else "OFFLINE",
                f"[{style}]{nv.label.value}[/{style}]" if style else nv.label.value,
                verify,
            ]
            if row_key in table.rows:
                col_keys = list(table.columns.keys())
                for col_idx, val in enumerate(row_data):
                    table.update_cell(row_key, col_keys[col_idx], val)
            else:
                table.add_row(*row_data, key=row_key)
        for row_key in list(table.rows.keys()):
            if row_key.value not in present:
                table.remove_row(row_key)

    def update_status(self) -> None:
        """Refresh the sidebar with current state."""
        sched = self.scheduler
        view = sched.view
        lines = ["[bold]Status[/bold]", ""]

        if view is None:
            lines.append("[yellow]Waiting for first poll...[/yellow]")
        elif view.online:
            lines.append("[green]System Online[/green]")
        else:
            lines.append("[bold red]System Offline[/bold red]")
            if view.error:
                lines.append(f"[dim]{view.error[:60]}[/dim]")

        lines.append(f"\nMode: [bold]{sched.mode}[/bold] ({sched.interval:.1f}s)")
        lines.append(f"{self.client.base_url}")

        if view is not None and view.stats is not None:
            if view.stats.is_leader:
                lines.append(f"\nServer #{view.stats.server_id}")
                lines.append("[green]● LEADER (Primary)[/green]")
            else:
                lines.append(f"\nServer #{view.stats.server_id}")
                lines.append("[yellow]● FOLLOWER (Backup)[/yellow]")

        if view is not None:
            counts = view.counts()
            lines.append("")
            lines.append(f"Nodes:   {counts['total']}")
            lines.append(f"Online:  [green]{counts['online']}[/green]")
            lines.append(f"Offline: [blue]{counts['offline']}[/blue]")
            lines.append(f"Outage:  [red]{counts['outage']}[/red]")

        if sched.skipped_ticks:
            lines.append(f"\n[dim]Skipped ticks: {sched.skipped_ticks}[/dim]")

        if self.debug_mode:
            lines.append("\n[yellow]DEBUG ON[/yellow]")

        try:
            self.query_one("#sidebar", Static).update("\n".join(lines))
        except Exception:
            pass

    def _show_help(self):
        """Display help text in the log."""
        help_text = (
            "[bold]--- Device ---[/bold]\n"
            "  connect / disconnect / reconnect\n"
            "  outage start|end      Simulate an outage\n"
            "  low_voltage           Simulate low voltage\n"
            "  voltage <V>           Manual voltage override\n"
            "  configure <id> [rgn]  Assign identity and connect\n"
            "\n"
            "[bold]--- Dashboard ---[/bold]\n"
            "  verify <id> / v       Ask HQ to re-check a node\n"
            "  status / nodes        Show current summary\n"
            "  refresh / r           Poll now (or F5)\n"
            "\n"
            "[bold]--- Keys / Misc ---[/bold]\n"
            "  debug / d             Toggle debug mode (or F2)\n"
            "  clear / cls           Clear log (or F3)\n"
            "  Esc                   Focus input\n"
            "  q / quit              Quit"
        )
        log = self.query_one("#log", RichLog)
        log.write(help_text)

    # ---- Actions ----

    def action_toggle_debug(self) -> None:
        """Toggle debug mode."""
        self.debug_mode = not self.debug_mode
        self.notify(f"Debug: {'ON' if self.debug_mode else 'OFF'}")
        self.update_status()

    def action_clear_log(self) -> None:
        """Clear the log panel."""
        self.query_one("#log", RichLog).clear()

    def action_refresh(self) -> None:
        """Poll now unless a fetch is already running."""
        if not self.scheduler.refresh():
            self.log_message("Fetch already in flight", style="dim")

    def action_focus_input(self) -> None:
        """Focus the command input."""
        self.query_one("#cmd-input", Input).focus()

    def log_message(self, text: str, style: str = ""):
        """Convenience: post a LogMsg."""
        self.post_message(self.LogMsg(text, style))

    async def on_unmount(self) -> None:
        """Stop polling and close the HTTP client when the app exits."""
        self.scheduler.remove_listener(self._on_view)
        await self.scheduler.stop()
        await self.client.aclose()
