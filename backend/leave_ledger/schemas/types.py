from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import Field, PlainSerializer

# Day amounts are Decimal internally and plain JSON numbers on the wire.
Days = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

PositiveDays = Annotated[
    Decimal,
    Field(gt=0, max_digits=10, decimal_places=2, multiple_of=Decimal("0.5")),
    PlainSerializer(float, return_type=float, when_used="json"),
]

NonNegativeDays = Annotated[
    Decimal,
    Field(ge=0, max_digits=10, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]

LeaveTypeCode = Annotated[str, Field(min_length=1, max_length=50, pattern=r"^[a-z0-9_\-]+$")]
