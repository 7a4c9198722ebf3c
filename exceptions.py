"""
Error taxonomy for the explorer data-access layer
"""

from typing import Optional


class ExplorerError(Exception):
    """Base class for all explorer errors"""


class NotFoundError(ExplorerError):
    """Requested entity is genuinely absent"""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class BlockNotFound(NotFoundError):
    def __init__(self, height: int):
        super().__init__("Block", str(height))


class TransactionNotFound(NotFoundError):
    def __init__(self, tx_hash: str):
        super().__init__("Transaction", tx_hash)


class UpstreamError(ExplorerError):
    """The underlying HTTP call failed or returned a non-2xx status"""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)
