"""
Header validation for call detail CSV uploads
"""
from typing import Iterable, List, Optional

import structlog

from ..errors import SchemaError
from ..models import CALL_DETAIL_COLUMNS

logger = structlog.get_logger(__name__)


def split_header(header: str, delimiter: str = ",") -> List[str]:
    """Split a header line into trimmed column names"""
    return [column.strip() for column in header.split(delimiter)]


class SchemaValidator:
    """Checks an input header against the expected ordered column set"""

    def __init__(self, expected_columns: Iterable[str] = CALL_DETAIL_COLUMNS, delimiter: str = ","):
        self.expected_columns = tuple(expected_columns)
        self.delimiter = delimiter

    @property
    def expected_header(self) -> str:
        return self.delimiter.join(self.expected_columns)

    def validate(self, header: str, name_prefix: Optional[str] = None) -> List[str]:
        """Return the trimmed columns or raise SchemaError on any mismatch"""
        columns = split_header(header, self.delimiter)
        if self.delimiter.join(columns) != self.expected_header:
            logger.warning(
                "Rejected CSV header",
                name_prefix=name_prefix,
                header=header,
                expected=self.expected_header,
            )
            raise SchemaError(self.expected_header, header, name_prefix)
        return columns
