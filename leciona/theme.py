"""Presentation values derived from settings whenever the document is persisted."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .const import DEFAULT_SETTINGS


@dataclass(slots=True, frozen=True)
class ThemeVariables:
    dark_mode: bool
    primary_color: str
    primary_light: str
    primary_medium: str

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> ThemeVariables:
        color = settings.get("themeColor")
        if not isinstance(color, str) or not color:
            color = DEFAULT_SETTINGS["themeColor"]
        # 8-digit hex: the trailing byte is the alpha channel.
        return cls(
            dark_mode=bool(settings.get("darkMode")),
            primary_color=color,
            primary_light=f"{color}15",
            primary_medium=f"{color}40",
        )

    def as_css(self) -> dict[str, str]:
        return {
            "--primary-color": self.primary_color,
            "--primary-light": self.primary_light,
            "--primary-medium": self.primary_medium,
        }


__all__ = ["ThemeVariables"]
