"""PositionEvent: a sender's reported cursor coordinate.

Inbound frames are parsed here and nowhere else. The model is strict: numbers
must be real JSON numbers (a ``"5"`` string or a boolean is rejected, not
coerced), coordinates must be finite, and unknown keys are refused. Anything
that fails is simply not an event; callers drop it.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class PositionEvent(BaseModel):
    """Cursor position relayed between connected clients."""

    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    id: str = Field(min_length=1, max_length=128, description="Sender identity")
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)
    color: str | None = Field(default=None, max_length=32)

    def to_wire(self) -> dict[str, object]:
        """Outbound frame body; `color` is omitted when unset."""
        return self.model_dump(mode="json", exclude_none=True)


def parse_position(raw: str | bytes) -> PositionEvent | None:
    """Parse a raw JSON frame into a :class:`PositionEvent`, or ``None`` if invalid."""
    try:
        return PositionEvent.model_validate_json(raw)
    except ValidationError:
        return None


__all__ = ["PositionEvent", "parse_position"]
