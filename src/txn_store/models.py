"""
Pydantic data model for the Transaction Store.

The wire payload and the stored row share this shape; ``id`` is the only
conflict key.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Transaction(BaseModel):
    """One logical transaction. Two instances with the same ``id`` are the same event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "transactionId"))
    date: datetime
    document: str = Field(validation_alias=AliasChoices("document", "clientId"))
    name: str
    age: int = Field(ge=0)
    amount: float = Field(allow_inf_nan=False)
    installments: int = Field(ge=1)

    @field_validator("date")
    @classmethod
    def _require_tz(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("date must carry a UTC offset (RFC3339)")
        return v


# Column order used for inserts and for the wire payload.
TRANSACTION_FIELDS: tuple[str, ...] = (
    "id",
    "date",
    "document",
    "name",
    "age",
    "amount",
    "installments",
)
