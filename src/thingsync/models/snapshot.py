"""Snapshot models: one device as seen by one source.

Both sources report LIFX-shaped light payloads::

    {
        "id": "d073d5000001",
        "label": "Desk",
        "power": "on",
        "brightness": 0.5,
        "color": {"hue": 120.0, "saturation": 1.0, "kelvin": 3500},
        "group": {"id": "g-1", "name": "Office"},
        "connected": true,
        "product": {"capabilities": {"has_color": true, "min_kelvin": 2500, "max_kelvin": 9000}}
    }

:class:`SourceSnapshot` flattens the nested ``group``/``product`` objects and
folds the top-level brightness into :class:`LightColor`.
"""

from __future__ import annotations

import colorsys
from enum import StrEnum
from typing import Any

from pydantic import Field

from thingsync._constants import HUE_TOLERANCE_DEGREES, KELVIN_MAX, KELVIN_MIN, KELVIN_TOLERANCE, UNIT_TOLERANCE
from thingsync.models._base import ThingSyncBaseModel


class Power(StrEnum):
    ON = "on"
    OFF = "off"

    @classmethod
    def coerce(cls, value: Any) -> Power:
        """Map the power encodings seen in the wild to a member.

        The cloud API reports ``"on"``/``"off"``; LAN payloads report the
        raw level (``0``..``65535``) or a boolean.
        """
        if isinstance(value, Power):
            return value
        if isinstance(value, bool):
            return cls.ON if value else cls.OFF
        if isinstance(value, (int, float)):
            return cls.ON if value > 0 else cls.OFF
        if isinstance(value, str):
            return cls(value.strip().lower())
        raise ValueError(f"unsupported power value: {value!r}")


class LightColor(ThingSyncBaseModel):
    """HSBK colour.  Unset components mean "not reported" / "don't care"."""

    hue: float | None = Field(default=None, ge=0.0, le=360.0)
    saturation: float | None = Field(default=None, ge=0.0, le=1.0)
    brightness: float | None = Field(default=None, ge=0.0, le=1.0)
    kelvin: int | None = Field(default=None, ge=KELVIN_MIN, le=KELVIN_MAX)

    @classmethod
    def parse(cls, text: str) -> LightColor:
        """Parse the colour grammar accepted by the set_color endpoint.

        Accepts whitespace separated ``#rrggbb`` and ``name:value`` tokens
        where name is one of ``hue``, ``saturation``, ``brightness``,
        ``kelvin``.  Later tokens override earlier ones.
        """
        values: dict[str, Any] = {}
        tokens = text.split()
        if not tokens:
            raise ValueError("colour string must not be empty")
        for token in tokens:
            if token.startswith("#"):
                values.update(_hex_to_hsb(token))
                continue
            name, sep, value = token.partition(":")
            name = name.strip().lower()
            if not sep or name not in {"hue", "saturation", "brightness", "kelvin"}:
                raise ValueError(f"unsupported colour token: {token!r}")
            try:
                values[name] = int(value) if name == "kelvin" else float(value)
            except ValueError as exc:
                raise ValueError(f"invalid value in colour token {token!r}") from exc
        return cls(**values, raw={"color": text})

    def to_command_string(self) -> str:
        parts: list[str] = []
        if self.hue is not None:
            parts.append(f"hue:{self.hue:g}")
        if self.saturation is not None:
            parts.append(f"saturation:{self.saturation:g}")
        if self.brightness is not None:
            parts.append(f"brightness:{self.brightness:g}")
        if self.kelvin is not None:
            parts.append(f"kelvin:{self.kelvin}")
        return " ".join(parts)

    def is_empty(self) -> bool:
        return self.hue is None and self.saturation is None and self.brightness is None and self.kelvin is None

    def satisfied_by(self, observed: LightColor | None) -> bool:
        """Whether *observed* agrees with every component set on this colour."""
        if self.is_empty():
            return True
        if observed is None:
            return False
        if self.hue is not None:
            if observed.hue is None:
                return False
            delta = abs(self.hue - observed.hue) % 360.0
            if min(delta, 360.0 - delta) > HUE_TOLERANCE_DEGREES:
                return False
        for name in ("saturation", "brightness"):
            wanted = getattr(self, name)
            if wanted is None:
                continue
            seen = getattr(observed, name)
            if seen is None or abs(wanted - seen) > UNIT_TOLERANCE:
                return False
        if self.kelvin is not None:
            if observed.kelvin is None or abs(self.kelvin - observed.kelvin) > KELVIN_TOLERANCE:
                return False
        return True


def _hex_to_hsb(token: str) -> dict[str, float]:
    digits = token[1:]
    if len(digits) != 6:
        raise ValueError(f"hex colour must be #rrggbb, got {token!r}")
    try:
        red, green, blue = (int(digits[i : i + 2], 16) / 255.0 for i in (0, 2, 4))
    except ValueError as exc:
        raise ValueError(f"invalid hex colour {token!r}") from exc
    hue, saturation, value = colorsys.rgb_to_hsv(red, green, blue)
    return {"hue": round(hue * 360.0, 3), "saturation": round(saturation, 4), "brightness": round(value, 4)}


class Capabilities(ThingSyncBaseModel):
    has_color: bool = False
    has_variable_color_temp: bool = False
    min_kelvin: int | None = None
    max_kelvin: int | None = None


class SourceSnapshot(ThingSyncBaseModel):
    """Normalized record of one device (or folded group) as seen by one source."""

    id: str
    label: str = ""
    power: Power = Power.OFF
    color: LightColor = Field(default_factory=LightColor)
    group_id: str | None = None
    group_name: str | None = None
    connected: bool = True
    capabilities: Capabilities = Field(default_factory=Capabilities)

    @classmethod
    def _unwrap(cls, values: dict[str, Any]) -> dict[str, Any]:
        working = dict(values)

        group = working.pop("group", None)
        if isinstance(group, dict):
            working.setdefault("group_id", group.get("id"))
            working.setdefault("group_name", group.get("name"))

        product = working.pop("product", None)
        if isinstance(product, dict) and "capabilities" not in working:
            capabilities = product.get("capabilities")
            if isinstance(capabilities, dict):
                working["capabilities"] = capabilities

        brightness = working.pop("brightness", None)
        color = working.get("color")
        if brightness is not None:
            color = dict(color) if isinstance(color, dict) else {}
            color.setdefault("brightness", brightness)
            working["color"] = color

        power = working.get("power")
        if power is not None and not (isinstance(power, str) and not power.strip()):
            working["power"] = Power.coerce(power)

        if working.get("id") is not None:
            working["id"] = str(working["id"])
        return working
