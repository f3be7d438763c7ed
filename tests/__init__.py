"""
RegScreen Test Suite
====================

Test organization:
- tests/unit/                      - Models and settings
- tests/services/applicability/    - Screening engine and API

The engine tests run against the in-memory regulation store; no
PostgreSQL, Redis or Kafka instance is needed.

Run tests:
    pytest                                  # All tests
    pytest tests/services/applicability     # Engine only
"""
