from __future__ import annotations

from enum import StrEnum


class TokenCategory(StrEnum):
    NEW = "new"
    BONDING = "bonding"
    GRADUATED = "graduated"
