from .transactions import TransactionOut, ErrorResponse
from .health import HealthResponse

__all__ = [
    "TransactionOut",
    "ErrorResponse",
    "HealthResponse",
]
