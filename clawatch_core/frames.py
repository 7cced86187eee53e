"""Frame data model for the Clawatch relay protocol.

Every wire message is a JSON object discriminated by its ``type`` string.
Each frame class knows its wire tag and how to build itself from, and
render itself to, the decoded JSON object. The codec in ``protocol.py``
does the text layer and the tag dispatch.

Optional fields that are absent on the wire are ``None`` here, never zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from .errors import FrameDecodeError

# --------------------------------------------------------------------------
# Field helpers
# --------------------------------------------------------------------------


def _require_str(data: dict[str, Any], key: str, frame_type: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise FrameDecodeError(f"{frame_type} frame requires string field '{key}'")
    return value


def _require_bool(data: dict[str, Any], key: str, frame_type: str) -> bool:
    value = data.get(key)
    if not isinstance(value, bool):
        raise FrameDecodeError(f"{frame_type} frame requires boolean field '{key}'")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values so optional fields stay off the wire."""
    return {k: v for k, v in data.items() if v is not None}


# --------------------------------------------------------------------------
# Device context
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Reading:
    """A single sensor value with an optional capture time (epoch ms)."""

    value: float
    received_at: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Reading | None:
        if not isinstance(data, dict):
            return None
        value = _number(data.get("value"))
        if value is None:
            return None
        return cls(value=value, received_at=_number(data.get("received_at")))

    def to_dict(self) -> dict[str, Any]:
        return _compact({"value": self.value, "received_at": self.received_at})


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    received_at: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Location | None:
        if not isinstance(data, dict):
            return None
        lat = _number(data.get("lat"))
        lng = _number(data.get("lng"))
        if lat is None or lng is None:
            return None
        return cls(lat=lat, lng=lng, received_at=_number(data.get("received_at")))

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {"lat": self.lat, "lng": self.lng, "received_at": self.received_at}
        )


@dataclass(frozen=True)
class BloodPressure:
    systolic: float
    diastolic: float
    received_at: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> BloodPressure | None:
        if not isinstance(data, dict):
            return None
        systolic = _number(data.get("systolic"))
        diastolic = _number(data.get("diastolic"))
        if systolic is None or diastolic is None:
            return None
        return cls(
            systolic=systolic,
            diastolic=diastolic,
            received_at=_number(data.get("received_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "systolic": self.systolic,
                "diastolic": self.diastolic,
                "received_at": self.received_at,
            }
        )


@dataclass(frozen=True)
class HealthReadings:
    heart_rate: Reading | None = None
    temperature: Reading | None = None
    oxygen: Reading | None = None
    blood_pressure: BloodPressure | None = None

    @classmethod
    def from_dict(cls, data: Any) -> HealthReadings | None:
        if not isinstance(data, dict):
            return None
        return cls(
            heart_rate=Reading.from_dict(data.get("heart_rate")),
            temperature=Reading.from_dict(data.get("temperature")),
            oxygen=Reading.from_dict(data.get("oxygen")),
            blood_pressure=BloodPressure.from_dict(data.get("blood_pressure")),
        )

    def is_empty(self) -> bool:
        return (
            self.heart_rate is None
            and self.temperature is None
            and self.oxygen is None
            and self.blood_pressure is None
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "heart_rate": self.heart_rate.to_dict() if self.heart_rate else None,
                "temperature": self.temperature.to_dict() if self.temperature else None,
                "oxygen": self.oxygen.to_dict() if self.oxygen else None,
                "blood_pressure": (
                    self.blood_pressure.to_dict() if self.blood_pressure else None
                ),
            }
        )


@dataclass(frozen=True)
class DeviceContext:
    """Sensor snapshot attached to an inbound message.

    Malformed sub-fields decode as None (unknown) rather than failing the
    whole frame.
    """

    location: Location | None = None
    steps: Reading | None = None
    battery: Reading | None = None
    health: HealthReadings | None = None

    @classmethod
    def from_dict(cls, data: Any) -> DeviceContext | None:
        if not isinstance(data, dict):
            return None
        return cls(
            location=Location.from_dict(data.get("location")),
            steps=Reading.from_dict(data.get("steps")),
            battery=Reading.from_dict(data.get("battery")),
            health=HealthReadings.from_dict(data.get("health")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "location": self.location.to_dict() if self.location else None,
                "steps": self.steps.to_dict() if self.steps else None,
                "battery": self.battery.to_dict() if self.battery else None,
                "health": self.health.to_dict() if self.health else None,
            }
        )


# --------------------------------------------------------------------------
# Roster
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchInfo:
    """A paired device as reported by the relay."""

    imei: str
    label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"imei": self.imei, "label": self.label})


# --------------------------------------------------------------------------
# Frames
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class RegisterFrame:
    type: ClassVar[str] = "register"

    token: str
    client: str
    version: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegisterFrame:
        return cls(
            token=_require_str(data, "token", cls.type),
            client=_require_str(data, "client", cls.type),
            version=_require_str(data, "version", cls.type),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "token": self.token,
            "client": self.client,
            "version": self.version,
        }


@dataclass(frozen=True)
class RegisteredFrame:
    type: ClassVar[str] = "registered"

    watches: tuple[WatchInfo, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegisteredFrame:
        raw = data.get("watches", [])
        if not isinstance(raw, list):
            raise FrameDecodeError("registered frame requires list field 'watches'")
        watches: list[WatchInfo] = []
        for item in raw:
            if not isinstance(item, dict):
                raise FrameDecodeError("registered frame has a non-object watch entry")
            watches.append(
                WatchInfo(
                    imei=_require_str(item, "imei", cls.type),
                    label=_optional_str(item, "label"),
                )
            )
        return cls(watches=tuple(watches))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "watches": [w.to_dict() for w in self.watches]}


@dataclass(frozen=True)
class ErrorFrame:
    type: ClassVar[str] = "error"

    message: str
    code: str | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorFrame:
        return cls(
            message=_require_str(data, "message", cls.type),
            code=_optional_str(data, "code"),
            id=_optional_str(data, "id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {"type": self.type, "id": self.id, "code": self.code, "message": self.message}
        )


@dataclass(frozen=True)
class PingFrame:
    type: ClassVar[str] = "ping"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PingFrame:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class PongFrame:
    type: ClassVar[str] = "pong"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PongFrame:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True)
class UnboundFrame:
    type: ClassVar[str] = "unbound"

    imei: str
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UnboundFrame:
        return cls(
            imei=_require_str(data, "imei", cls.type),
            reason=_optional_str(data, "reason"),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact({"type": self.type, "imei": self.imei, "reason": self.reason})


@dataclass(frozen=True)
class MessageFrame:
    """Inbound chat or command message from a device."""

    type: ClassVar[str] = "message"

    id: str
    imei: str
    text: str
    timestamp: float | None = None
    is_command: bool | None = None
    context: DeviceContext | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageFrame:
        is_command = data.get("isCommand")
        return cls(
            id=_require_str(data, "id", cls.type),
            imei=_require_str(data, "imei", cls.type),
            text=_require_str(data, "text", cls.type),
            timestamp=_number(data.get("timestamp")),
            is_command=is_command if isinstance(is_command, bool) else None,
            context=DeviceContext.from_dict(data.get("context")),
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type,
                "id": self.id,
                "imei": self.imei,
                "text": self.text,
                "timestamp": self.timestamp,
                "isCommand": self.is_command,
                "context": self.context.to_dict() if self.context else None,
            }
        )


@dataclass(frozen=True)
class ReplyFrame:
    type: ClassVar[str] = "reply"

    id: str
    text: str
    done: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplyFrame:
        return cls(
            id=_require_str(data, "id", cls.type),
            text=_require_str(data, "text", cls.type),
            done=_require_bool(data, "done", cls.type),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "text": self.text, "done": self.done}


@dataclass(frozen=True)
class ControlFrame:
    type: ClassVar[str] = "control"

    id: str
    action: str
    imei: str
    params: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ControlFrame:
        params = data.get("params")
        return cls(
            id=_require_str(data, "id", cls.type),
            action=_require_str(data, "action", cls.type),
            imei=_require_str(data, "imei", cls.type),
            params=params if isinstance(params, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type,
                "id": self.id,
                "action": self.action,
                "imei": self.imei,
                "params": self.params,
            }
        )


@dataclass(frozen=True)
class ControlAckFrame:
    type: ClassVar[str] = "control_ack"

    id: str
    ok: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ControlAckFrame:
        return cls(
            id=_require_str(data, "id", cls.type),
            ok=_require_bool(data, "ok", cls.type),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "ok": self.ok}


@dataclass(frozen=True)
class PushFrame:
    """Unsolicited text to a device (reminders, interim status)."""

    type: ClassVar[str] = "push"

    id: str
    imei: str
    text: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushFrame:
        return cls(
            id=_require_str(data, "id", cls.type),
            imei=_require_str(data, "imei", cls.type),
            text=_require_str(data, "text", cls.type),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "imei": self.imei, "text": self.text}


@dataclass(frozen=True)
class UnknownFrame:
    """A frame whose tag this client does not know. Kept for forward compatibility."""

    frame_type: str
    raw: dict[str, Any] = field(default_factory=lambda: {})

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


Frame = (
    RegisterFrame
    | RegisteredFrame
    | ErrorFrame
    | PingFrame
    | PongFrame
    | UnboundFrame
    | MessageFrame
    | ReplyFrame
    | ControlFrame
    | ControlAckFrame
    | PushFrame
)

FRAME_TYPES: dict[str, type[Frame]] = {
    cls.type: cls
    for cls in (
        RegisterFrame,
        RegisteredFrame,
        ErrorFrame,
        PingFrame,
        PongFrame,
        UnboundFrame,
        MessageFrame,
        ReplyFrame,
        ControlFrame,
        ControlAckFrame,
        PushFrame,
    )
}
