"""
Applicability Screening Routes
==============================

API route handlers for the Applicability Screening Service.
"""

from services.applicability.routes import screening, streams


__all__ = ["screening", "streams"]
