# domain/errors.py - Error taxonomy shared by every data model backend
from typing import Optional


class DataModelError(Exception):
    """Base class for all data model failures"""
    pass


class NotFoundError(DataModelError, LookupError):
    """Raised when a user or item does not exist"""
    pass


class InvalidArgumentError(DataModelError, ValueError):
    """Raised for null keys, non-finite values and malformed input"""
    pass


class ParseError(InvalidArgumentError):
    """Raised when a line or record of an input file cannot be parsed"""

    def __init__(self, message: str, source: Optional[str] = None, line_number: Optional[int] = None):
        self.source = source
        self.line_number = line_number
        location = ""
        if source is not None:
            location = f"{source}"
            if line_number is not None:
                location += f":{line_number}"
            location += ": "
        super().__init__(f"{location}{message}")


class BackendError(DataModelError):
    """Raised when the backing store fails (I/O, connectivity, query)"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message if cause is None else f"{message}: {cause}")
        self.cause = cause


class UnsupportedOperationError(DataModelError):
    """Raised for mutations on read-only models and iterator removal"""
    pass
