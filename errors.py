"""
DataLens error types
Every error carries a user-facing message; routes convert them to JSON responses
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class DataLensError(Exception):
    """Base class for errors surfaced to the user"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CsvParseError(DataLensError):
    """CSV text could not be turned into a table"""


class EmptyInputError(CsvParseError):
    def __init__(self, message: str = "CSV is empty or invalid."):
        super().__init__(message)


class NetworkError(DataLensError):
    """A remote fetch, auth or store call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class SecurityRuleContext:
    path: str
    operation: str  # 'get', 'list', 'create', 'update', 'delete'
    request_resource_data: Optional[Dict[str, Any]] = field(default=None)


class StorePermissionError(DataLensError):
    """The document store denied a request"""

    def __init__(self, context: SecurityRuleContext):
        message = (
            "Firestore error: Missing or insufficient permissions. "
            f"The following {context.operation} request was denied at path: {context.path}."
        )
        super().__init__(message)
        self.context = context

    def to_diagnostic(self) -> Dict[str, Any]:
        """Details for the development-only diagnostic overlay"""
        return {
            "operation": self.context.operation,
            "path": self.context.path,
            "requestResourceData": self.context.request_resource_data,
        }
