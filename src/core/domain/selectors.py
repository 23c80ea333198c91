"""Selector de imagen objetivo.

El operador pasa `latest`, `current`, un id de imagen o una versión; aquí se
normaliza a un valor tipado para que la resolución sea exhaustiva.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict

from core.errors import ValidationError

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


class SelectorKind(str, Enum):
    LATEST = "latest"
    CURRENT = "current"
    ID = "id"
    VERSION = "version"


class ImageSelector(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SelectorKind
    value: str | None = None

    @classmethod
    def parse(cls, raw: str | None) -> "ImageSelector":
        """`None`/vacío equivale a `latest`."""

        text = (raw or "").strip()
        if not text or text == "latest":
            return cls(kind=SelectorKind.LATEST)
        if text == "current":
            return cls(kind=SelectorKind.CURRENT)
        if any(ch.isspace() for ch in text):
            raise ValidationError(f'invalid image selector "{raw}"')
        if UUID_RE.match(text):
            return cls(kind=SelectorKind.ID, value=text.lower())
        return cls(kind=SelectorKind.VERSION, value=text)

    def __str__(self) -> str:
        return self.value or self.kind.value
