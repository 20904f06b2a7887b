"""Tests for permissions and transitions of the control tuple."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from compression_lib import reconciler
from compression_lib.models import ControlState, DevicePort, Session


def _session(ended: bool = False) -> Session:
    now = datetime.now(timezone.utc)
    return Session(
        id="s1",
        patient_id="p1",
        target_pressure=30.0,
        hold_time_seconds=10,
        started_at=now,
        ended_at=now if ended else None,
    )


PORT = DevicePort(device="/dev/ttyACM0")


def test_initial_state() -> None:
    state = reconciler.initial_state()

    assert state.patient_id is None
    assert state.session is None
    assert state.target_pressure == 30.0
    assert state.hold_time_seconds == 10
    assert not state.connected
    assert not state.monitoring
    assert not state.started_from_device


@pytest.mark.parametrize("state,expected", [
    (ControlState(), (False, False, False, False, False, False)),
    (ControlState(patient_id="p1"), (True, False, False, False, False, True)),
    (ControlState(patient_id="p1", target_pressure=0), (False, False, False, False, False, True)),
    (ControlState(patient_id="p1", hold_time_seconds=0), (False, False, False, False, False, True)),
    (ControlState(patient_id="p1", session=_session()), (False, True, False, False, False, True)),
    (ControlState(patient_id="p1", session=_session(), selected_port=PORT),
     (False, True, True, False, False, True)),
    (ControlState(patient_id="p1", session=_session(), selected_port=PORT, connected=True),
     (False, True, False, True, False, True)),
    (ControlState(patient_id="p1", session=_session(), selected_port=PORT, connected=True,
                  monitoring=True),
     (False, False, False, False, True, False)),
])
def test_permissions_table(state, expected) -> None:
    """Test every permission derived from representative states."""
    p = reconciler.permissions(state)

    assert (
        p.can_create_session,
        p.can_pick_device,
        p.can_connect,
        p.can_start,
        p.can_stop,
        p.can_reset,
    ) == expected


def test_reading_while_idle_is_device_start() -> None:
    """Test that a reading on a connected, idle session marks a device start."""
    state = ControlState(patient_id="p1", session=_session(), selected_port=PORT, connected=True)

    assert reconciler.is_device_start(state)
    after = reconciler.on_reading(state)

    assert after.monitoring
    assert after.started_from_device


def test_reading_while_monitoring_keeps_state() -> None:
    state = ControlState(patient_id="p1", session=_session(), connected=True, monitoring=True)

    assert not reconciler.is_device_start(state)
    assert reconciler.on_reading(state) is state


def test_stop_clears_device_start() -> None:
    state = ControlState(
        patient_id="p1", session=_session(), connected=True, monitoring=True, started_from_device=True
    )

    after = reconciler.on_stop(state)

    assert not after.monitoring
    assert not after.started_from_device


def test_operator_start_is_not_device_start() -> None:
    state = ControlState(patient_id="p1", session=_session(), connected=True)

    after = reconciler.on_start(state)

    assert after.monitoring
    assert not after.started_from_device


def test_disconnect_clears_monitoring() -> None:
    state = ControlState(
        patient_id="p1", session=_session(), connected=True, monitoring=True, started_from_device=True
    )

    after = reconciler.on_disconnected(state)

    assert not after.connected
    assert not after.monitoring
    assert not after.started_from_device
    assert after.session is state.session


def test_accepts_readings() -> None:
    connected = ControlState(patient_id="p1", session=_session(), connected=True)

    assert reconciler.accepts_readings(connected)
    assert not reconciler.accepts_readings(replace(connected, session=None))
    assert not reconciler.accepts_readings(replace(connected, session=_session(ended=True)))
    assert not reconciler.accepts_readings(replace(connected, connected=False))


def test_session_created_pins_patient() -> None:
    state = reconciler.on_session_created(ControlState(patient_id="other"), _session())

    assert state.session.id == "s1"
    assert state.patient_id == "p1"


def test_progress_steps() -> None:
    steps = dict(reconciler.progress_steps(ControlState(patient_id="p1", session=_session())))

    assert steps["Patient"]
    assert steps["Session created"]
    assert not steps["Device"]
    assert not steps["Cycles running"]
