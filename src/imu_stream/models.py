"""Data models for the IMU stream: wire packets and normalized samples."""

import json
import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Union

from src.imu_stream.exceptions import PacketDecodeError

# Channels the smoothing filter operates on. Impact is left raw so the
# peak detector and the history agree on the force actually measured.
SMOOTHED_CHANNELS = ("ax", "ay", "az", "gx", "gy", "gz", "velocity")

NUMERIC_CHANNELS = SMOOTHED_CHANNELS + ("impact",)
ORIENTATION_CHANNELS = ("roll", "pitch", "yaw")


def now_ms() -> float:
    return time.time() * 1000


def _number(value: Any) -> Optional[float]:
    """Coerce a JSON scalar to a finite float; None for anything else."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-standard JSON constant {name}")


def _axis(container: Any, key: str) -> Optional[float]:
    if isinstance(container, dict):
        return _number(container.get(key))
    return None


@dataclass
class Vector3:
    """A three-axis reading; missing axes are None."""

    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None

    @classmethod
    def from_wire(cls, value: Any) -> "Vector3":
        return cls(x=_axis(value, "x"), y=_axis(value, "y"), z=_axis(value, "z"))


@dataclass
class Packet:
    """One inbound unit of sensor data, as received from the relay."""

    timestamp: Optional[float] = None
    accel: Vector3 = field(default_factory=Vector3)
    gyro: Vector3 = field(default_factory=Vector3)
    velocity: Optional[float] = None
    impact: Optional[float] = None
    roll: Optional[float] = None
    pitch: Optional[float] = None
    yaw: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Packet":
        """Build a packet from a decoded JSON object.

        Orientation may be nested under ``orientation`` or given as
        top-level ``roll``/``pitch``/``yaw``; the nested value wins.
        """
        orientation = data.get("orientation")
        if not isinstance(orientation, dict):
            orientation = {}

        def angle(key: str) -> Optional[float]:
            nested = _number(orientation.get(key))
            return nested if nested is not None else _number(data.get(key))

        return cls(
            timestamp=_number(data.get("timestamp")),
            accel=Vector3.from_wire(data.get("accel")),
            gyro=Vector3.from_wire(data.get("gyro")),
            velocity=_number(data.get("velocity")),
            impact=_number(data.get("impact")),
            roll=angle("roll"),
            pitch=angle("pitch"),
            yaw=angle("yaw"),
        )

    def to_wire(self) -> dict:
        """Convert to the JSON object shape producers send."""
        wire = {
            "timestamp": self.timestamp,
            "accel": asdict(self.accel),
            "gyro": asdict(self.gyro),
            "velocity": self.velocity,
            "impact": self.impact,
        }
        if any(v is not None for v in (self.roll, self.pitch, self.yaw)):
            wire["orientation"] = {"roll": self.roll, "pitch": self.pitch, "yaw": self.yaw}
        return wire


def load_frame(raw: Union[str, bytes]) -> dict:
    """Parse one wire frame into a JSON object.

    Raises:
        PacketDecodeError: if the frame is not UTF-8 JSON or not an object.
            NaN and Infinity literals are rejected as in strict JSON.
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw, parse_constant=_reject_constant)
    except ValueError as e:
        raise PacketDecodeError(raw=raw if isinstance(raw, str) else None) from e
    if not isinstance(data, dict):
        raise PacketDecodeError(raw=raw)
    return data


def decode_packet(raw: Union[str, bytes]) -> Packet:
    """Parse one wire frame into a Packet."""
    return Packet.from_dict(load_frame(raw))


@dataclass(frozen=True)
class Sample:
    """A normalized (and possibly smoothed) packet stored in history."""

    timestamp: float
    ax: float = 0.0
    ay: float = 0.0
    az: float = 0.0
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0
    velocity: float = 0.0
    impact: float = 0.0
    roll: Optional[float] = None
    pitch: Optional[float] = None
    yaw: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def accel_magnitude(self) -> float:
        return math.sqrt(self.ax * self.ax + self.ay * self.ay + self.az * self.az)


def format_packet(packet: Packet, received_at: Optional[float] = None) -> Sample:
    """Flatten a Packet into a Sample, defaulting missing channels.

    A packet without a finite timestamp is stamped with *received_at* (or the
    current wall-clock time in epoch milliseconds).
    """
    timestamp = packet.timestamp
    if timestamp is None or not math.isfinite(timestamp):
        timestamp = received_at if received_at is not None else now_ms()

    def or_zero(value: Optional[float]) -> float:
        return 0.0 if value is None else value

    return Sample(
        timestamp=timestamp,
        ax=or_zero(packet.accel.x),
        ay=or_zero(packet.accel.y),
        az=or_zero(packet.accel.z),
        gx=or_zero(packet.gyro.x),
        gy=or_zero(packet.gyro.y),
        gz=or_zero(packet.gyro.z),
        velocity=or_zero(packet.velocity),
        impact=or_zero(packet.impact),
        roll=packet.roll,
        pitch=packet.pitch,
        yaw=packet.yaw,
    )
