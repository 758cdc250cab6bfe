"""icntrack — Ingest and reconcile infection-control records for a nursing facility.

Parses census pastes, bulk vaccination/antibiotic tables, legacy tracker
JSON and import packs into one deduplicated, identity-stable record store.
"""

__version__ = "0.4.0"
