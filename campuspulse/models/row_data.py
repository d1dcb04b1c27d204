from __future__ import annotations

from dataclasses import dataclass

"""RawRow model.

RawRow is the untyped side of the import boundary: one input row exactly as
it arrived from a CSV file or spreadsheet. The Row Normalizer converts
RawRows into FeedbackRecords; nothing past the normalizer sees a RawRow.
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """Logical representation of a single input row before normalization."""
    row_index: int  # 0-based position in the submitted row sequence
    values: dict[str, str]  # Column name -> raw string value ("" for empty cells)

    @staticmethod
    def from_mapping(row_index: int, mapping: dict[str, object]) -> RawRow:
        # keys and values are kept verbatim; only None becomes ""
        values = {str(key): "" if val is None else str(val) for key, val in mapping.items()}
        return RawRow(row_index=row_index, values=values)

    @property
    def is_empty(self) -> bool:
        return all(not v.strip() for v in self.values.values())
