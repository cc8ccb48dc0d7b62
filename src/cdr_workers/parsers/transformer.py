"""
Per-row normalization applied while splitting

Transformers are stateless: every call works on the given line only, so a
single instance can be shared across uploads.
"""
from typing import List, Optional, Sequence

from ..errors import TransformError


class RowTransformer:
    """Base class for row transforms used by the splitter"""

    def transform_columns(self, columns: Sequence[str]) -> List[str]:
        """Columns of the rows this transformer produces"""
        return list(columns)

    def transform(
        self,
        line: str,
        file_path: Optional[str] = None,
        row_index: int = 0,
        source_line: Optional[int] = None,
    ) -> str:
        raise NotImplementedError


def find_nth(text: str, char: str, occurrence: int) -> int:
    """Index of the n-th (1-based) occurrence of ``char``, or -1"""
    position = -1
    for _ in range(occurrence):
        position = text.find(char, position + 1)
        if position < 0:
            return -1
    return position


class DateTimeMergeTransformer(RowTransformer):
    """Merges two adjacent columns into one space-joined column.

    With the defaults, ``call_date`` (index 2) and ``end_time`` (index 3)
    collapse into ``call_end_datetime``. Every other column is left untouched.
    """

    def __init__(
        self,
        merge_index: int = 2,
        merged_column: str = "call_end_datetime",
        delimiter: str = ",",
        expected_field_count: Optional[int] = None,
    ):
        if merge_index < 0:
            raise ValueError("merge_index must be non-negative")
        self.merge_index = merge_index
        self.merged_column = merged_column
        self.delimiter = delimiter
        self.expected_field_count = expected_field_count

    def transform_columns(self, columns: Sequence[str]) -> List[str]:
        columns = list(columns)
        if len(columns) < self.merge_index + 2:
            raise ValueError(
                f"Cannot merge columns {self.merge_index} and {self.merge_index + 1} "
                f"of a {len(columns)}-column header"
            )
        return columns[:self.merge_index] + [self.merged_column] + columns[self.merge_index + 2:]

    def transform(
        self,
        line: str,
        file_path: Optional[str] = None,
        row_index: int = 0,
        source_line: Optional[int] = None,
    ) -> str:
        if self.expected_field_count is not None:
            field_count = line.count(self.delimiter) + 1
            if field_count != self.expected_field_count:
                raise TransformError(
                    line, file_path, row_index, source_line,
                    reason=f"expected {self.expected_field_count} fields, found {field_count}",
                )

        # The delimiter between the two merged columns
        position = find_nth(line, self.delimiter, self.merge_index + 1)
        if position < 0:
            raise TransformError(
                line, file_path, row_index, source_line,
                reason="date/time delimiter not found",
            )

        return line[:position].rstrip() + " " + line[position + 1:].lstrip()
