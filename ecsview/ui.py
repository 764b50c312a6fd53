"""
Terminal UI - textual application over the service presenter.

Layout: header (identity, totals), search input, service list, legend.
Polling runs as a worker on the app's event loop; each published snapshot
is delivered back to the app as a message and redrawn wholesale.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult, SuspendNotSupported
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, OptionList, Static
from textual.widgets.option_list import Option

from ecsview import config
from ecsview.aggregator import poll_loop
from ecsview.gateway import GatewayError
from ecsview.models import ServiceRecord, Snapshot
from ecsview.presenter import DesiredCountError, ServicePresenter, format_line, header_text

logger = logging.getLogger(__name__)

LEGEND = (
    "[yellow]/[/yellow] Search | [yellow]Enter[/yellow] Actions | "
    "[red]R[/red] Redeploy all visible | [yellow]q[/yellow] Quit"
)


class SnapshotUpdated(Message):
    """Posted whenever the publisher swaps in a new snapshot."""

    def __init__(self, snapshot: Snapshot) -> None:
        super().__init__()
        self.snapshot = snapshot


# ---------------------------------------------------------------------------
# Modals
# ---------------------------------------------------------------------------

class MessageScreen(ModalScreen[None]):
    BINDINGS = [Binding("escape", "close", show=False)]

    def __init__(self, message: str) -> None:
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(Text(self.message))
            yield Button("OK", variant="primary", id="ok")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(None)

    def action_close(self) -> None:
        self.dismiss(None)


class ConfirmScreen(ModalScreen[bool]):
    BINDINGS = [Binding("escape", "cancel", show=False)]

    def __init__(self, question: str) -> None:
        super().__init__()
        self.question = question

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(Text(self.question))
            with Horizontal(classes="buttons"):
                yield Button("Yes", variant="error", id="yes")
                yield Button("No", variant="primary", id="no")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")

    def action_cancel(self) -> None:
        self.dismiss(False)


class ServiceActionsScreen(ModalScreen[Optional[str]]):
    """Per-service menu; dismisses with the chosen action id or None."""

    BINDINGS = [Binding("escape", "cancel", show=False)]

    ACTIONS = (
        ("scale", "Update desired count"),
        ("restart", "Restart service"),
        ("status", "Deployment status"),
        ("shell", "Open shell"),
    )

    def __init__(self, record: ServiceRecord) -> None:
        super().__init__()
        self.record = record

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(Text(
                f"{self.record.name}\n"
                f"Running: {self.record.running_count}  Desired: {self.record.desired_count}"
            ))
            for action_id, label in self.ACTIONS:
                yield Button(label, id=action_id)
            yield Button("Cancel", variant="primary", id="cancel")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(None if event.button.id == "cancel" else event.button.id)

    def action_cancel(self) -> None:
        self.dismiss(None)


class DesiredCountScreen(ModalScreen[Optional[str]]):
    """Text prompt for a new desired count; returns the raw text."""

    BINDINGS = [Binding("escape", "cancel", show=False)]

    def __init__(self, record: ServiceRecord) -> None:
        super().__init__()
        self.record = record

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(Text(f"New desired count for {self.record.name}:"))
            yield Input(value=str(self.record.desired_count), id="count")
            with Horizontal(classes="buttons"):
                yield Button("Update", variant="success", id="update")
                yield Button("Cancel", variant="primary", id="cancel")

    def on_mount(self) -> None:
        self.query_one("#count", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "update":
            self.dismiss(self.query_one("#count", Input).value)
        else:
            self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)


# ---------------------------------------------------------------------------
# Main view widgets
# ---------------------------------------------------------------------------

class SearchInput(Input):
    BINDINGS = [
        Binding("escape", "clear", "Clear", show=False),
        Binding("down", "leave", show=False),
    ]

    def action_clear(self) -> None:
        self.value = ""
        self.app.query_one(ServiceList).focus()

    def action_leave(self) -> None:
        services = self.app.query_one(ServiceList)
        if services.option_count:
            services.focus()


class ServiceList(OptionList):
    def action_cursor_up(self) -> None:
        if not self.highlighted:
            self.app.query_one(SearchInput).focus()
            return
        super().action_cursor_up()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class EcsViewApp(App[None]):
    """Interactive ECS service list."""

    TITLE = "ecsview"
    CSS = """
    #top-bar { height: 2; padding: 0 1; }
    #header { width: 1fr; }
    #identity { width: 1fr; text-align: right; color: $warning; }
    #search { margin: 0 1; }
    #services { height: 1fr; }
    #legend { height: 1; text-align: center; }
    ModalScreen { align: center middle; }
    .dialog {
        width: 70; height: auto; padding: 1 2;
        border: thick $primary; background: $surface;
    }
    .dialog Button { width: 100%; margin-top: 1; }
    .buttons { height: auto; }
    .buttons Button { width: 1fr; }
    """

    BINDINGS = [
        Binding("slash", "focus_search", "Search"),
        Binding("R", "restart_all", "Redeploy all"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        presenter: ServicePresenter,
        interval: float = config.POLL_INTERVAL_SECONDS,
        identity: str = "",
    ) -> None:
        super().__init__()
        self.presenter = presenter
        self.interval = interval
        self.identity = identity
        self._visible: list[ServiceRecord] = []
        self._stop: Optional[asyncio.Event] = None
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="top-bar"):
            yield Static(id="header")
            yield Static(Text(self.identity), id="identity")
        yield SearchInput(placeholder="/ filter services by name", id="search")
        yield ServiceList(id="services")
        yield Static(LEGEND, id="legend")

    def on_mount(self) -> None:
        self._unsubscribe = self.presenter.publisher.subscribe(self._on_snapshot)
        self.refresh_list()
        self.query_one(ServiceList).focus()
        self.start_polling()

    def on_unmount(self) -> None:
        self.stop_polling()
        if self._unsubscribe is not None:
            self._unsubscribe()

    # -- polling ------------------------------------------------------------

    def start_polling(self) -> None:
        self._stop = asyncio.Event()
        self.run_worker(
            poll_loop(self.presenter.gateway, self.presenter.publisher, self.interval, self._stop),
            name="poll",
            group="poll",
            exclusive=True,
        )

    def stop_polling(self) -> None:
        if self._stop is not None:
            self._stop.set()
        self.workers.cancel_group(self, "poll")

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        self.post_message(SnapshotUpdated(snapshot))

    def on_snapshot_updated(self, message: SnapshotUpdated) -> None:
        self.refresh_list()

    # -- rendering ----------------------------------------------------------

    def refresh_list(self) -> None:
        services = self.query_one(ServiceList)
        highlighted = services.highlighted
        self._visible = self.presenter.visible_services()

        services.clear_options()
        services.add_options([Option(Text.from_markup(format_line(r))) for r in self._visible])
        if self._visible:
            services.highlighted = min(highlighted or 0, len(self._visible) - 1)

        self.query_one("#header", Static).update(header_text(self.presenter.snapshot))

    @on(Input.Changed, "#search")
    def filter_changed(self, event: Input.Changed) -> None:
        self.presenter.set_filter(event.value)
        self.refresh_list()

    @on(Input.Submitted, "#search")
    def search_submitted(self) -> None:
        services = self.query_one(ServiceList)
        if services.option_count:
            services.focus()

    @on(OptionList.OptionSelected, "#services")
    def service_selected(self, event: OptionList.OptionSelected) -> None:
        if 0 <= event.option_index < len(self._visible):
            self.service_actions(self._visible[event.option_index])

    def action_focus_search(self) -> None:
        self.query_one(SearchInput).focus()

    # -- intents ------------------------------------------------------------

    async def _message(self, text: str) -> None:
        await self.push_screen_wait(MessageScreen(text))

    @work
    async def action_restart_all(self) -> None:
        targets = list(self._visible)
        if not targets:
            return
        confirmed = await self.push_screen_wait(
            ConfirmScreen(f"Are you sure you want to restart all {len(targets)} visible services?")
        )
        if not confirmed:
            return
        report = await self.presenter.restart_all(targets)
        if report.ok:
            await self._message("All services have been restarted successfully.")
        else:
            await self._message(f"Failed to restart services: {', '.join(report.failed)}")

    @work
    async def service_actions(self, record: ServiceRecord) -> None:
        action = await self.push_screen_wait(ServiceActionsScreen(record))
        if action == "scale":
            await self._change_desired_count(record)
        elif action == "restart":
            await self._restart(record)
        elif action == "status":
            await self._show_deployment_status(record)
        elif action == "shell":
            await self._open_shell(record)

    async def _change_desired_count(self, record: ServiceRecord) -> None:
        text = await self.push_screen_wait(DesiredCountScreen(record))
        if text is None:
            return
        try:
            fresh = await self.presenter.change_desired_count(record, text)
        except DesiredCountError as e:
            await self._message(str(e))
        except GatewayError as e:
            await self._message(f"Error updating service: {e}")
        else:
            await self._message(
                f"Desired count for {fresh.name} set to {fresh.desired_count}. "
                "Running count will follow on the next refresh."
            )

    async def _restart(self, record: ServiceRecord) -> None:
        if not await self.push_screen_wait(ConfirmScreen(f"Restart {record.name}?")):
            return
        try:
            await self.presenter.restart_service(record)
        except GatewayError as e:
            await self._message(f"Error restarting service: {e}")
        else:
            await self._message(f"Service {record.name} is being redeployed.")

    async def _show_deployment_status(self, record: ServiceRecord) -> None:
        try:
            status = await self.presenter.deployment_status(record)
        except GatewayError as e:
            await self._message(f"Error fetching deployment status: {e}")
        else:
            await self._message(f"{record.name}: {status}")

    async def _open_shell(self, record: ServiceRecord) -> None:
        try:
            ref = await self.presenter.shell_target(record)
        except GatewayError as e:
            await self._message(f"Cannot open shell: {e}")
            return

        # The terminal belongs to the remote session until it exits.
        self.stop_polling()
        try:
            with self.suspend():
                code = self.presenter.gateway.exec_interactive_shell(ref)
            logger.info(f"Shell session for {record.name} exited with {code}")
        except (GatewayError, SuspendNotSupported) as e:
            await self._message(f"Cannot open shell: {e}")
        finally:
            self.start_polling()
            self.refresh_list()
