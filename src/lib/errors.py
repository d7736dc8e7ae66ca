"""
Exception taxonomy for chatdoc

Policies:
    ParseError         - collected as warnings; the parser degrades to
                         literal content instead of aborting
    NoSuchProcessor,
    DuplicateProcessor,
    InvalidProcessor   - raised synchronously by the registry
    ValidationError    - raised by validators; the store turns it into an
                         (ok, reason) result and never lets it escape
    KeyNotFound        - raised by StateStore.get for a missing path
    ExpansionError     - delivered to executor error callbacks and rendered
                         into the document as the block's error variant
    CancellationError  - delivered when work is cancelled; never rendered
                         as a failure
"""

from typing import Optional


class ChatdocError(Exception):
    """Base class for all chatdoc errors"""
    pass


class ParseError(ChatdocError):
    """Raised (or recorded) for malformed or unresolved markers"""

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.message = message
        self.line_number = line_number
        if line_number is not None:
            super().__init__(f"{message} (line {line_number})")
        else:
            super().__init__(message)


class NoSuchProcessor(ChatdocError, LookupError):
    """Raised when looking up a processor name that was never registered"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No processor registered under '{name}'")


class DuplicateProcessor(ChatdocError):
    """Raised when a processor name is registered twice"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Processor '{name}' is already registered")


class InvalidProcessor(ChatdocError):
    """Raised when a descriptor misses a required field"""

    def __init__(self, name: str, missing: str):
        self.name = name
        self.missing = missing
        super().__init__(f"Processor '{name}' must have a '{missing}' field")


class ValidationError(ChatdocError):
    """Raised by store validators for a rejected value"""
    pass


class KeyNotFound(ChatdocError, KeyError):
    """Raised when a store path does not resolve"""

    def __init__(self, path: str, key: Optional[str] = None):
        self.path = path
        self.key = key
        if key is not None and key != path:
            message = f"Key '{key}' not found in path '{path}'"
        else:
            message = f"Path '{path}' not found"
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ExpansionError(ChatdocError):
    """Failure reported by a block executor"""

    def __init__(self, message: str, block_type: Optional[str] = None):
        self.message = message
        self.block_type = block_type
        super().__init__(message)


class CancellationError(ChatdocError):
    """Work was cancelled before it completed"""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        if request_id:
            super().__init__(f"Request '{request_id}' was cancelled")
        else:
            super().__init__("Request was cancelled")
