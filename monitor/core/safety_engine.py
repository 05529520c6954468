"""
Safety-State Engine

Folds telemetry records into the current snapshot and derives the safety
view from it:
- Gas classification (SAFE / WARNING / DANGER / UNKNOWN)
- Emergency flag (flame detected OR gas DANGER)
- Control gating (manual device commands only in MANUAL mode while connected)

SAFETY:
- Missing data is UNKNOWN, never an emergency and never a permission
- The snapshot is replaced wholesale per record, never merged field by field
- Classification and gating are pure functions of their inputs
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from common.connection_manager import ConnectionState
from common.constants import (
    GAS_WARNING_THRESHOLD, GAS_DANGER_THRESHOLD,
    FIELD_GAS, FIELD_FLAME, FIELD_FAN_STATE, FIELD_SPRINKLER_STATE, FIELD_MODE,
    STATE_ON, STATE_OFF, MODE_MANUAL, MODE_AUTOMATIC,
    EMERGENCY_REASON_FLAME, EMERGENCY_REASON_GAS
)
from common.telemetry_codec import TelemetryDecodeError

logger = logging.getLogger(__name__)


class GasClassification(Enum):
    """Gas danger levels."""
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"
    UNKNOWN = "unknown"


class DeviceState(Enum):
    """Actuator states as sent on the wire."""
    ON = STATE_ON
    OFF = STATE_OFF


class ControlMode(Enum):
    """Installation control modes as sent on the wire."""
    MANUAL = MODE_MANUAL
    AUTOMATIC = MODE_AUTOMATIC


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Latest known reading. None means unknown."""
    gas_level: Optional[float] = None
    flame_detected: Optional[bool] = None
    fan_state: Optional[DeviceState] = None
    sprinkler_state: Optional[DeviceState] = None
    control_mode: Optional[ControlMode] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> 'TelemetrySnapshot':
        """
        Build a snapshot from a decoded telemetry record.

        Missing or null fields are unknown. Fields of the wrong type or
        with unrecognised values make the whole record malformed.

        Raises:
            TelemetryDecodeError: If any present field is invalid
        """
        if not isinstance(message, dict):
            raise TelemetryDecodeError(f"Expected record dict, got {type(message).__name__}")

        gas = message.get(FIELD_GAS)
        # bool is an int subclass; reject it explicitly
        if gas is not None and (isinstance(gas, bool) or not isinstance(gas, (int, float))):
            raise TelemetryDecodeError(f"Invalid {FIELD_GAS}: {gas!r}")

        flame = message.get(FIELD_FLAME)
        if flame is not None and not isinstance(flame, bool):
            raise TelemetryDecodeError(f"Invalid {FIELD_FLAME}: {flame!r}")

        return cls(
            gas_level=gas,
            flame_detected=flame,
            fan_state=_parse_enum(DeviceState, message, FIELD_FAN_STATE),
            sprinkler_state=_parse_enum(DeviceState, message, FIELD_SPRINKLER_STATE),
            control_mode=_parse_enum(ControlMode, message, FIELD_MODE)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire-format view of the snapshot."""
        return {
            FIELD_GAS: self.gas_level,
            FIELD_FLAME: self.flame_detected,
            FIELD_FAN_STATE: self.fan_state.value if self.fan_state else None,
            FIELD_SPRINKLER_STATE: self.sprinkler_state.value if self.sprinkler_state else None,
            FIELD_MODE: self.control_mode.value if self.control_mode else None
        }


def _parse_enum(enum_cls, message: Dict[str, Any], field: str):
    value = message.get(field)
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise TelemetryDecodeError(f"Invalid {field}: {value!r}") from None


@dataclass(frozen=True)
class DerivedSafetyState:
    """Safety view derived from a snapshot."""
    gas_classification: GasClassification
    emergency: bool
    controls_locked: bool
    emergency_reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gas_classification': self.gas_classification.value,
            'emergency': self.emergency,
            'emergency_reasons': list(self.emergency_reasons),
            'controls_locked': self.controls_locked
        }


def classify_gas(gas_level: Optional[float]) -> GasClassification:
    """
    Classify a gas reading.

    Returns:
        UNKNOWN if no reading, SAFE below 300, WARNING for 300-599,
        DANGER at 600 and above
    """
    if gas_level is None:
        return GasClassification.UNKNOWN
    if gas_level < GAS_WARNING_THRESHOLD:
        return GasClassification.SAFE
    if gas_level < GAS_DANGER_THRESHOLD:
        return GasClassification.WARNING
    return GasClassification.DANGER


def apply_telemetry(snapshot: TelemetrySnapshot) -> DerivedSafetyState:
    """Derive the safety state for a snapshot. Total over all snapshots."""
    classification = classify_gas(snapshot.gas_level)

    reasons = []
    if snapshot.flame_detected is True:
        reasons.append(EMERGENCY_REASON_FLAME)
    if classification == GasClassification.DANGER:
        reasons.append(EMERGENCY_REASON_GAS)

    return DerivedSafetyState(
        gas_classification=classification,
        emergency=bool(reasons),
        controls_locked=snapshot.control_mode == ControlMode.AUTOMATIC,
        emergency_reasons=tuple(reasons)
    )


def can_issue_device_command(control_mode: Optional[ControlMode],
                             connection_state: ConnectionState) -> bool:
    """Actuator toggles are allowed only in MANUAL mode over a live connection."""
    return (control_mode == ControlMode.MANUAL and
            connection_state == ConnectionState.CONNECTED)


def can_change_mode(connection_state: ConnectionState) -> bool:
    """Mode changes are allowed whenever the connection is live."""
    return connection_state == ConnectionState.CONNECTED


class SafetyStateEngine:
    """
    Owns the current TelemetrySnapshot and its memoized derived state.

    Connection state is read through a callback so the engine never holds
    a second copy of it.
    """

    def __init__(self, get_connection_state: Callable[[], ConnectionState]):
        """
        Initialize engine.

        Args:
            get_connection_state: Callback returning the current connection state
        """
        self.get_connection_state = get_connection_state

        self._snapshot = TelemetrySnapshot()
        self._derived = apply_telemetry(self._snapshot)

        self.last_update_time = 0.0
        self.records_applied = 0
        self.records_rejected = 0

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    @property
    def derived(self) -> DerivedSafetyState:
        return self._derived

    def update(self, message: Dict[str, Any]) -> DerivedSafetyState:
        """
        Replace the snapshot with a decoded telemetry record.

        Args:
            message: Decoded telemetry record

        Returns:
            Derived state for the new snapshot

        Raises:
            TelemetryDecodeError: If the record is malformed (snapshot unchanged)
        """
        try:
            snapshot = TelemetrySnapshot.from_message(message)
        except TelemetryDecodeError:
            self.records_rejected += 1
            raise

        return self.apply(snapshot)

    def apply(self, snapshot: TelemetrySnapshot) -> DerivedSafetyState:
        """Replace the snapshot and recompute the derived state."""
        previous = self._derived
        self._snapshot = snapshot
        self._derived = apply_telemetry(snapshot)
        self.last_update_time = time.time()
        self.records_applied += 1

        if self._derived.gas_classification != previous.gas_classification:
            logger.info(f"Gas classification changed: {previous.gas_classification.value} -> "
                        f"{self._derived.gas_classification.value} (gas={snapshot.gas_level})")

        logger.debug(f"Telemetry applied: {snapshot.to_dict()}")
        return self._derived

    def can_issue_device_command(self) -> bool:
        """Check whether an actuator toggle may be sent (doubles as UI enable flag)."""
        return can_issue_device_command(self._snapshot.control_mode, self.get_connection_state())

    def can_change_mode(self) -> bool:
        """Check whether a mode change may be sent."""
        return can_change_mode(self.get_connection_state())

    def get_snapshot_age(self) -> Optional[float]:
        """Seconds since the last applied record (None if none yet)."""
        if self.last_update_time <= 0:
            return None
        return time.time() - self.last_update_time

    def get_stats(self) -> dict:
        return {
            'records_applied': self.records_applied,
            'records_rejected': self.records_rejected,
            'snapshot_age_s': self.get_snapshot_age()
        }
