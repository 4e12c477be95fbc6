"""Delimited record source: streams raw field lists from a CSV file."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterator, List, Union

from loguru import logger


def find_first_csv(directory: Union[str, Path]) -> Path:
    """Return the first ``*.csv`` / ``*.CSV`` file (sorted by name) in ``directory``."""
    d = Path(directory)
    if d.is_file():
        return d
    for p in sorted(d.iterdir()):
        if p.is_file() and p.suffix in (".csv", ".CSV"):
            return p
    raise FileNotFoundError(f"no CSV file found in {d}")


def iter_records(path: Union[str, Path], delimiter: str = ";") -> Iterator[List[str]]:
    """Yield one field list per row; rows may have any number of fields.

    Rows the csv module cannot read are logged and skipped.
    """
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f, delimiter=delimiter)
        while True:
            try:
                row = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                logger.warning(f"Could not read line {reader.line_num} of {path}: {e}")
                continue
            if row:
                yield row
