"""
Schémas de réponses OpenAPI pour RFC 9457 Problem Details.

Ce module réexporte les schémas du module fastapi-errors-rfc9457.
"""

from fastapi_errors_rfc9457 import (
    COMMON_RESPONSES,
    ConflictErrorResponse,
    ProblemDetailResponse,
)

__all__ = [
    "COMMON_RESPONSES",
    "ConflictErrorResponse",
    "ProblemDetailResponse",
]
