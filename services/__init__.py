"""
RegScreen Services
==================

Microservices for the RegScreen regulatory screening platform.

Services:
- applicability: adaptive applicability screening engine
"""

__all__ = [
    "applicability",
]
