"""Per-node liveness and warning transitions."""

from __future__ import annotations

from dataclasses import replace

import pytest

from xdgm.monitor.alerts import AlertKind
from xdgm.monitor.state import (
    AWOL_MESSAGE,
    AlertPolicy,
    NodeState,
    NodeStatus,
    WarningKind,
    decode_warnings,
)
from xdgm.telemetry.decoder import TelemetrySnapshot
from tests.helpers import EPOCH, NODE_KEY


def _state() -> NodeState:
    return NodeState(public_key=NODE_KEY, slot=0, identifier="nTest")


def _snapshot(flags: int = 0) -> TelemetrySnapshot:
    return TelemetrySnapshot(warning_flags=flags, cpu_cores=4, ledger_seq=7)


@pytest.mark.parametrize(
    ("flags", "expected"),
    [
        (0, ()),
        (8, (WarningKind.NOT_SYNCED,)),
        (
            15,
            (
                WarningKind.AMENDMENT_BLOCKED,
                WarningKind.UNL_BLOCKED,
                WarningKind.AMENDMENT_WARNED,
                WarningKind.NOT_SYNCED,
            ),
        ),
        (0xF0, ()),
    ],
)
def test_decode_warnings_follows_bit_order(flags: int, expected) -> None:
    assert decode_warnings(flags) == expected


def test_warning_labels() -> None:
    assert [kind.label for kind in decode_warnings(15)] == [
        "Amendment Blocked",
        "UNL Blocked",
        "Amendment Warned",
        "NOT SYNCED",
    ]


def test_first_snapshot_initialises_state_without_alerts() -> None:
    state = _state()
    assert state.status is NodeStatus.INITIALIZING
    assert state.status.label == "WAITING"

    updated, alerts = state.apply(_snapshot(), EPOCH, source=("10.0.0.1", 5000))

    assert alerts == ()
    assert updated.status is NodeStatus.SYNCED
    assert updated.last_seen_at == EPOCH
    assert updated.source == ("10.0.0.1", 5000)
    assert updated.metrics is not None


def test_liveness_boundary() -> None:
    state, _ = _state().apply(_snapshot(), EPOCH)

    quiet, alerts = state.tick(EPOCH + 1.5)
    assert not quiet.awol
    assert alerts == ()

    awol, alerts = state.tick(EPOCH + 2.5)
    assert awol.awol
    assert awol.status is NodeStatus.AWOL
    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.AWOL, AWOL_MESSAGE)
    ]


def test_awol_alert_is_throttled() -> None:
    state, _ = _state().apply(_snapshot(), EPOCH)

    state, first = state.tick(EPOCH + 3)
    state, repeat = state.tick(EPOCH + 60)
    state, later = state.tick(EPOCH + 3 + 300.5)

    assert len(first) == 1
    assert repeat == ()
    assert [alert.kind for alert in later] == [AlertKind.AWOL]


def test_packet_arrival_clears_awol() -> None:
    state, _ = _state().apply(_snapshot(), EPOCH)
    state, _ = state.tick(EPOCH + 5)
    assert state.awol

    state, alerts = state.apply(_snapshot(), EPOCH + 6)

    assert not state.awol
    assert state.status is NodeStatus.SYNCED
    assert alerts == ()


def test_new_warning_raises_alert_per_new_kind() -> None:
    state, _ = _state().apply(_snapshot(), EPOCH)

    state, alerts = state.apply(_snapshot(flags=0b0011), EPOCH + 1)

    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.NEW_WARNING, "Amendment Blocked"),
        (AlertKind.NEW_WARNING, "UNL Blocked"),
    ]
    assert state.last_warning_alert_at is None

    # From the next packet on they are persistent and share one window.
    state, alerts = state.apply(_snapshot(flags=0b0011), EPOCH + 2)
    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.PERSISTENT_WARNING, "Amendment Blocked"),
        (AlertKind.PERSISTENT_WARNING, "UNL Blocked"),
    ]
    state, alerts = state.apply(_snapshot(flags=0b0011), EPOCH + 3)
    assert alerts == ()


def test_new_warning_does_not_delay_persistent_reannouncement() -> None:
    state, alerts = _state().apply(_snapshot(flags=8), EPOCH)
    assert [alert.kind for alert in alerts] == [AlertKind.PERSISTENT_WARNING]

    state, alerts = state.apply(_snapshot(flags=9), EPOCH + 299)
    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.NEW_WARNING, "Amendment Blocked"),
    ]
    assert state.last_warning_alert_at == EPOCH

    state, alerts = state.tick(EPOCH + 300.5)
    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.PERSISTENT_WARNING, "Amendment Blocked"),
        (AlertKind.PERSISTENT_WARNING, "NOT SYNCED"),
    ]
    assert state.last_warning_alert_at == EPOCH + 300.5


def test_warning_present_from_first_snapshot_is_announced_as_persistent() -> None:
    state, alerts = _state().apply(_snapshot(flags=8), EPOCH)

    assert [(alert.kind, alert.message) for alert in alerts] == [
        (AlertKind.PERSISTENT_WARNING, "NOT SYNCED")
    ]
    assert state.status is NodeStatus.NOT_SYNCED


def test_persistent_warning_is_reannounced_after_throttle() -> None:
    state, _ = _state().apply(_snapshot(flags=8), EPOCH)

    state, alerts = state.apply(_snapshot(flags=8), EPOCH + 1)
    assert alerts == ()
    state, alerts = state.tick(EPOCH + 1.5)
    assert alerts == ()

    state, _ = state.apply(_snapshot(flags=8), EPOCH + 301)
    assert state.last_warning_alert_at == EPOCH + 301


def test_persistent_warning_suppressed_while_awol() -> None:
    state, _ = _state().apply(_snapshot(flags=4), EPOCH)

    state, alerts = state.tick(EPOCH + 400)

    assert [alert.kind for alert in alerts] == [AlertKind.AWOL]


def test_custom_policy_changes_timeout() -> None:
    state = replace(_state(), policy=AlertPolicy(liveness_timeout=10.0, alert_throttle=5.0))
    state, _ = state.apply(_snapshot(), EPOCH)

    state, alerts = state.tick(EPOCH + 5)

    assert not state.awol
    assert alerts == ()


def test_tick_before_first_packet_is_noop() -> None:
    state = _state()

    assert state.tick(EPOCH + 100) == (state, ())
