"""Shared base model and small constrained types for the wire contracts.

All payloads leave the process as camelCase JSON (the browser client reads
`cpuUsagePercent`, `commitsLast7Days`, ...) while Python code works with
snake_case attributes. `CamelModel` bridges the two: fields are declared in
snake_case, serialized with camelCase aliases, and accept either spelling on
input.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NonNegativeFloat = Annotated[float, Field(ge=0.0, allow_inf_nan=False)]
NonNegativeInt = Annotated[int, Field(ge=0)]
Percent = Annotated[float, Field(ge=0.0, le=100.0, allow_inf_nan=False)]


class CamelModel(BaseModel):
    """Frozen model serialized with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, object]:
        """Return the JSON-ready camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["CamelModel", "NonNegativeFloat", "NonNegativeInt", "Percent"]
