"""Pure state functions over the control tuple.

Nothing here holds state: permissions and transitions are recomputed from a
ControlState every time they are needed.
"""

from dataclasses import replace
from typing import List, Tuple

from compression_lib import protocol
from compression_lib.models import ControlState, DevicePort, Permissions, Session


def initial_state() -> ControlState:
    """State after startup or reset: nothing selected, default protocol."""
    return ControlState(
        target_pressure=protocol.DEFAULT_TARGET_PRESSURE_KPA,
        hold_time_seconds=protocol.DEFAULT_HOLD_TIME_S,
    )


def permissions(state: ControlState) -> Permissions:
    """Compute the operator actions permitted by the given state."""
    has_session = state.session is not None
    return Permissions(
        can_create_session=(
            bool(state.patient_id)
            and not has_session
            and state.target_pressure > 0
            and state.hold_time_seconds > 0
        ),
        can_pick_device=has_session and not state.monitoring,
        can_connect=has_session and state.selected_port is not None and not state.connected,
        can_start=has_session and state.connected and not state.monitoring,
        can_stop=has_session and state.monitoring,
        can_reset=not state.monitoring and (has_session or bool(state.patient_id)),
    )


def is_device_start(state: ControlState) -> bool:
    """True if a decoded reading in this state means the device started on its own.

    The controller can begin cycling from its hardware button, without a
    software start command.
    """
    return not state.monitoring and state.session is not None and state.connected


def accepts_readings(state: ControlState) -> bool:
    """True if readings may be buffered and forwarded in this state."""
    return state.connected and state.session is not None and not state.session.is_ended


def on_reading(state: ControlState) -> ControlState:
    """Transition applied when a reading is decoded."""
    if is_device_start(state):
        return replace(state, monitoring=True, started_from_device=True)
    return state


def on_session_created(state: ControlState, session: Session) -> ControlState:
    return replace(state, session=session, patient_id=session.patient_id)


def on_port_selected(state: ControlState, port: DevicePort) -> ControlState:
    return replace(state, selected_port=port)


def on_connected(state: ControlState) -> ControlState:
    return replace(state, connected=True)


def on_disconnected(state: ControlState) -> ControlState:
    """A closed connection cannot be monitoring."""
    return replace(state, connected=False, monitoring=False, started_from_device=False)


def on_start(state: ControlState) -> ControlState:
    return replace(state, monitoring=True, started_from_device=False)


def on_stop(state: ControlState) -> ControlState:
    return replace(state, monitoring=False, started_from_device=False)


def progress_steps(state: ControlState) -> List[Tuple[str, bool]]:
    """Operator checklist shown alongside the live panel."""
    return [
        ("Patient", bool(state.patient_id)),
        ("Protocol", state.target_pressure > 0 and state.hold_time_seconds > 0),
        ("Session created", state.session is not None),
        ("Device", state.selected_port is not None),
        ("Connection", state.connected),
        ("Cycles running", state.monitoring),
    ]
