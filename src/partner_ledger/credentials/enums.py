from __future__ import annotations

from enum import StrEnum


class Provider(StrEnum):
    """External game providers a partner tree can settle against."""

    INVEST = "invest"
    OROPLAY = "oroplay"
