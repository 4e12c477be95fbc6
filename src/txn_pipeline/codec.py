"""
Transaction codec: delimited field-tuples in, canonical JSON bytes out.

Field order of an input record is ``id;date;document;name;age;amount;installments``.
Dates must be RFC3339 timestamps with an explicit offset.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Sequence

from pydantic import ValidationError

from txn_store.models import TRANSACTION_FIELDS, Transaction

from .errors import DeserializeError, ParseError, ParseReason

REQUIRED_FIELDS = len(TRANSACTION_FIELDS)

_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)


def parse_date(value: str) -> datetime:
    """Parse an RFC3339 timestamp; raises ValueError on any other layout."""
    value = value.strip()
    if not _RFC3339.match(value):
        raise ValueError(f"not an RFC3339 timestamp: {value!r}")
    if value[-1] in "Zz":
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value.replace("t", "T"))


def _to_int(field: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ParseError(ParseReason.FIELD_CONVERSION, field, str(e)) from e


def parse(fields: Sequence[str]) -> Transaction:
    """Build a Transaction from one record; all-or-nothing."""
    if len(fields) < REQUIRED_FIELDS:
        raise ParseError(
            ParseReason.MISSING_FIELD, detail=f"expected {REQUIRED_FIELDS}, got {len(fields)}"
        )

    age = _to_int("age", fields[4])
    try:
        amount = float(fields[5].strip())
    except ValueError as e:
        raise ParseError(ParseReason.FIELD_CONVERSION, "amount", str(e)) from e
    installments = _to_int("installments", fields[6])

    try:
        date = parse_date(fields[1])
    except ValueError as e:
        raise ParseError(ParseReason.INVALID_DATE, "date", str(e)) from e

    try:
        return Transaction(
            id=fields[0].strip(),
            date=date,
            document=fields[2],
            name=fields[3],
            age=age,
            amount=amount,
            installments=installments,
        )
    except ValidationError as e:
        # Range checks (age >= 0, installments >= 1, finite amount, non-empty id)
        field = str(e.errors()[0]["loc"][0]) if e.errors() else None
        reason = ParseReason.MISSING_FIELD if field == "id" else ParseReason.FIELD_CONVERSION
        raise ParseError(reason, field, e.errors()[0]["msg"]) from e


def encode(t: Transaction) -> bytes:
    """Canonical UTF-8 JSON with fixed field order."""
    return t.model_dump_json(include=set(TRANSACTION_FIELDS)).encode("utf-8")


def decode(body: bytes) -> Transaction:
    try:
        return Transaction.model_validate_json(body)
    except (ValidationError, ValueError) as e:
        raise DeserializeError(str(e)) from e
