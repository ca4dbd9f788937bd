"""Fixed-interval poll loop that reconciles server snapshots into a view model.

Every tick fetches one snapshot set and runs it through the classifier, the
log watcher and the verification tracker, then publishes a ViewModel to the
registered listeners:
  - Serialized: a tick that fires while a fetch is still in flight is skipped
  - Fail-soft: a failed fetch publishes an offline view with the last known
    nodes and is retried on the next tick (the interval is the only backoff)
  - Stoppable: after stop() no tick fires and late fetch results are dropped
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from enum import Enum
from typing import Callable, Optional

from classifier import Label, classify_snapshot
from constants import MULTI_POLL_INTERVAL, SINGLE_POLL_INTERVAL
from grid_client import GridClient, TransportError
from log_watcher import LogWatcher, TriggerEvent
from node_snapshot import NodeSnapshot, ServerStats, VerificationStatus
from verification import VerificationTracker
from view_model import NodeView, ViewModel

Listener = Callable[[ViewModel], None]


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"


class PollScheduler:
    """Poll loop + snapshot reconciler for one endpoint.

    mode "single" polls GET /status (one district device, 1s period);
    mode "multi" polls GET /nodes and GET /stats (HQ dashboard, 2s period).
    """

    SINGLE_INTERVAL = SINGLE_POLL_INTERVAL
    MULTI_INTERVAL = MULTI_POLL_INTERVAL
    DEVICE_CURSOR = "__device__"  # Single mode: one log stream, whatever the node id

    def __init__(self, client: GridClient, mode: str = "multi",
                 interval: Optional[float] = None,
                 watcher: Optional[LogWatcher] = None,
                 tracker: Optional[VerificationTracker] = None):
        if mode not in ("single", "multi"):
            raise ValueError(f"mode must be 'single' or 'multi', got {mode!r}")
        self.client = client
        self.mode = mode
        if interval is None:
            interval = self.SINGLE_INTERVAL if mode == "single" else self.MULTI_INTERVAL
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.watcher = watcher if watcher is not None else LogWatcher()
        self.tracker = tracker if tracker is not None else VerificationTracker()

        self.state = SchedulerState.IDLE
        self.view: Optional[ViewModel] = None
        self.stats: Optional[ServerStats] = None
        self.skipped_ticks = 0
        self.failures = 0          # Consecutive failed cycles
        self._listeners: list[Listener] = []
        self._last_labels: dict[str, Label] = {}
        self._cycle = 0
        self._generation = 0       # Bumped by stop(); results from older generations are dropped
        self._running = False
        self._stopped = False
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    # ---- Public API ----

    def add_listener(self, listener: Listener):
        """Register a callable that receives every published ViewModel."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Start the tick loop as a background task on the running loop."""
        if self._ticker is None or self._ticker.done():
            self._stopped = False
            self._running = True
            self._ticker = asyncio.create_task(self.run())
        return self._ticker

    async def run(self):
        """Tick every `interval` seconds until stop()."""
        self._running = True
        self._stopped = False
        gen = self._generation
        self.client.log(
            f"[POLL] {self.mode} mode, every {self.interval:.1f}s -> {self.client.base_url}")
        try:
            while self._running and gen == self._generation:
                self.tick()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            pass
        finally:
            if gen == self._generation:
                self._running = False

    async def stop(self):
        """Stop ticking and drop whatever fetch is still in flight."""
        self._running = False
        self._stopped = True
        self._generation += 1
        current = asyncio.current_task()
        for task in (self._ticker, self._inflight):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._ticker = None
        self._inflight = None
        self.state = SchedulerState.IDLE

    def tick(self) -> bool:
        """Start one fetch unless one is already running. Returns True if started."""
        if self._stopped:
            return False
        if self.state is SchedulerState.FETCHING:
            self.skipped_ticks += 1
            self.client.log("[POLL] skip: previous fetch still in flight", _debug=True)
            return False
        self.state = SchedulerState.FETCHING
        self._inflight = asyncio.create_task(self._cycle_task(self._generation))
        return True

    def refresh(self) -> bool:
        """Poll right away (after a command), unless busy or stopped."""
        return self.tick()

    async def poll_once(self) -> Optional[ViewModel]:
        """Run one full cycle and return the published view.

        If a fetch is already in flight, waits for that one instead.
        Returns None when stopped or when the result was discarded.
        """
        self.tick()
        task = self._inflight
        if task is None:
            return None
        return await task

    # ---- Imperative entry points ----

    async def request_verification(self, node_id: str) -> VerificationStatus:
        """Ask the server to re-check a node. Raises CommandRejected on refusal."""
        self.tracker.begin(node_id)
        self.client.log(f"[VERIFY] Requesting verification for {node_id}")
        try:
            body = await self.client.request_verification(node_id)
        except BaseException:
            # Failed or cancelled before any reply: release the claim
            self.tracker.abandon(node_id)
            raise
        status = self.tracker.acknowledge(node_id, body.get("status"), body.get("error"))
        self.client.log(
            f"[VERIFY] {node_id}: {body.get('status')} -> {status.value}, "
            f"waiting for device report")
        self.refresh()
        return status

    async def request_action(self, verb: str) -> dict:
        body = await self.client.request_action(verb)
        self.refresh()
        return body

    async def set_voltage(self, voltage) -> dict:
        body = await self.client.set_voltage(voltage)
        self.refresh()
        return body

    async def configure(self, node_id: str, region: str) -> dict:
        body = await self.client.configure(node_id, region)
        self.refresh()
        return body

    # ---- Reconciliation ----

    def reconcile(self, snapshots: list[NodeSnapshot],
                  stats: Optional[ServerStats] = None) -> ViewModel:
        """Feed one successful fetch through all components and publish the view.

        Every node is derived first; cursors, verification states and labels
        change only once all of them succeeded, so a failure part-way through
        leaves per-node state as it was.
        """
        staged = []
        for snap in snapshots:
            result = classify_snapshot(snap)
            verification = self.tracker.preview(snap.node_id, snap.verification_status)
            cursor_key = self.DEVICE_CURSOR if self.mode == "single" else snap.node_id
            found = self.watcher.peek(cursor_key, snap.logs)
            if self.mode == "single":
                found = [replace(ev, node_id=snap.node_id) for ev in found]
            staged.append((snap, result, cursor_key, found,
                           NodeView.build(snap, result, verification)))

        self._cycle += 1
        views: list[NodeView] = []
        events: list[TriggerEvent] = []

        for snap, result, cursor_key, found, nv in staged:
            self.tracker.apply_server(snap.node_id, snap.verification_status)
            self.watcher.advance(cursor_key, snap.logs)
            events.extend(found)

            prev = self._last_labels.get(snap.node_id)
            if prev is not None and prev is not result.label:
                self.client.log(
                    f"[POLL] {snap.node_id}: {prev.value} -> {result.label.value} "
                    f"({snap.voltage:.1f}V, {snap.power_state.value})")
            self._last_labels[snap.node_id] = result.label

            views.append(nv)

        if self.mode == "multi":
            present = {s.node_id for s in snapshots}
            for nid in self.tracker.known_nodes():
                if nid not in present:
                    self.tracker.forget(nid)

        for ev in events:
            self.client.log(f"[TRIGGER] {ev.node_id}: {ev.text}", style="bold yellow")

        if self.failures:
            self.client.log(f"[POLL] Endpoint reachable again after {self.failures} failed poll(s)",
                            style="green")
        self.failures = 0
        if stats is not None:
            self.stats = stats

        view = ViewModel(
            mode=self.mode,
            online=True,
            nodes=tuple(views),
            events=tuple(events),
            stats=self.stats,
            cycle=self._cycle,
        )
        self._publish(view)
        return view

    def summary(self) -> str:
        """Return a human-readable status summary."""
        lines = ["--- Grid Monitor ---"]
        lines.append(f"Mode:     {self.mode} ({self.interval:.1f}s)")
        lines.append(f"Endpoint: {self.client.base_url}")
        view = self.view
        if view is None:
            lines.append("No data yet")
        else:
            lines.append(f"System:   {'online' if view.online else 'OFFLINE'}")
            if view.error:
                lines.append(f"Error:    {view.error}")
            if view.stats:
                role = "LEADER (Primary)" if view.stats.is_leader else "FOLLOWER (Backup)"
                lines.append(f"Server:   #{view.stats.server_id} {role}")
            counts = view.counts()
            lines.append(
                f"Nodes:    {counts['total']} total, {counts['online']} online, "
                f"{counts['offline']} offline, {counts['outage']} outage")
            for nv in view.nodes:
                verify = f" verify:{nv.verification.value}" \
                    if nv.verification is not VerificationStatus.NONE else ""
                lines.append(
                    f"  {nv.node_id} [{nv.region}]: {nv.voltage:.1f}V "
                    f"{nv.power_state} -> {nv.label.value}{verify}")
        lines.append("--------------------")
        return "\n".join(lines)

    # ---- Internal ----

    async def _cycle_task(self, gen: int) -> Optional[ViewModel]:
        try:
            return await self._fetch_and_reconcile(gen)
        finally:
            if gen == self._generation:
                self.state = SchedulerState.IDLE
                self._inflight = None

    async def _fetch_and_reconcile(self, gen: int) -> Optional[ViewModel]:
        try:
            snapshots, stats = await self._fetch()
        except TransportError as e:
            if gen != self._generation:
                return None
            return self._publish_offline(str(e))
        except Exception as e:
            if gen != self._generation:
                return None
            return self._publish_offline(f"unexpected fetch error: {e!r}")

        if gen != self._generation:
            self.client.log("[POLL] Discarding late result after stop", _debug=True)
            return None

        try:
            return self.reconcile(snapshots, stats)
        except Exception as e:
            return self._publish_offline(f"reconcile failed: {e!r}")

    async def _fetch(self) -> tuple[list[NodeSnapshot], Optional[ServerStats]]:
        if self.mode == "single":
            return [await self.client.fetch_status()], None
        nodes = await self.client.fetch_nodes()
        stats = None
        try:
            stats = await self.client.fetch_stats()
        except TransportError as e:
            self.client.log(f"[POLL] stats unavailable: {e}", _debug=True)
        return nodes, stats

    def _publish_offline(self, error: str) -> ViewModel:
        self.failures += 1
        if self.failures == 1:
            self.client.log(f"[POLL] System offline: {error}", style="bold red")
        else:
            self.client.log(f"[POLL] still offline ({self.failures}): {error}", _debug=True)
        prev = self.view
        view = ViewModel(
            mode=self.mode,
            online=False,
            nodes=prev.nodes if prev else (),
            stats=self.stats,
            error=error,
            cycle=self._cycle,
        )
        self._publish(view)
        return view

    def _publish(self, view: ViewModel):
        self.view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                self.client.log(f"[POLL] listener error: {e!r}", style="bold red")
