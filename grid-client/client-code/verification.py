"""Per-node verification workflow: NONE -> PENDING -> CONFIRMED.

The tracker is a thin local cache. The operator can open a request on a node
that is NONE or CONFIRMED; the server's acknowledgement moves it to PENDING.
Only the server closes a request (PENDING -> CONFIRMED or back to NONE), and
whatever the server reports in a later snapshot overwrites the local value.
There is no client-side expiry: a PENDING request stays open until the server
changes it.
"""

from __future__ import annotations

from typing import Optional

from constants import VERIFY_ACCEPTED
from grid_client import CommandRejected
from node_snapshot import VerificationStatus


class VerificationRejected(CommandRejected):
    """A verification request was refused locally or by the server."""


class VerificationTracker:

    def __init__(self):
        self._states: dict[str, VerificationStatus] = {}
        self._in_flight: set[str] = set()  # Requests sent, reply not yet seen

    def state(self, node_id: str) -> VerificationStatus:
        return self._states.get(node_id, VerificationStatus.NONE)

    def can_request(self, node_id: str) -> bool:
        return (self.state(node_id) is not VerificationStatus.PENDING
                and node_id not in self._in_flight)

    def begin(self, node_id: str) -> None:
        """Claim the right to send a request. Raises while one is still open."""
        if not self.can_request(node_id):
            raise VerificationRejected(
                f"verification already pending for {node_id}")
        self._in_flight.add(node_id)

    def abandon(self, node_id: str) -> None:
        """Release a claim from begin() when the request never got a reply."""
        self._in_flight.discard(node_id)

    def acknowledge(self, node_id: str, status: Optional[str],
                    reason: Optional[str] = None) -> VerificationStatus:
        """Apply the server's reply to a /verify request.

        "sent"/"queued"/"queued_web" open the request (PENDING). Anything
        else leaves the state alone and raises with the server's reason.
        """
        self._in_flight.discard(node_id)
        if status is not None and str(status).strip().lower() in VERIFY_ACCEPTED:
            self._states[node_id] = VerificationStatus.PENDING
            return VerificationStatus.PENDING
        raise VerificationRejected(reason or f"unexpected verify status: {status!r}")

    def preview(self, node_id: str,
                status: Optional[VerificationStatus]) -> VerificationStatus:
        """What apply_server() would return, without storing anything."""
        return status if status is not None else self.state(node_id)

    def apply_server(self, node_id: str,
                     status: Optional[VerificationStatus]) -> VerificationStatus:
        """Mirror the server-held status. None means the field was absent."""
        if status is not None:
            self._states[node_id] = status
        return self.state(node_id)

    def forget(self, node_id: str) -> None:
        self._states.pop(node_id, None)
        self._in_flight.discard(node_id)

    def known_nodes(self) -> list[str]:
        return list(self._states)
