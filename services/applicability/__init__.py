"""
Applicability Screening Service
===============================

Adaptive screening of organizations against the regulation corpus.

Features:
- Profile completeness and data-quality analysis
- Tiered query strategies (Basic/Enhanced/Comprehensive)
- Single-flight, TTL-bounded result cache
- Progressive re-screening pushed to subscribers
- Deduplicated multi-location roll-up

Port: 8010
"""

__version__ = "0.1.0"
