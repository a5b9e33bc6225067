"""
AppraisalStudio - Listing Copy Generator for Real-Estate Agents
===============================================================

Generates marketing copy from structured property data, meters usage
against subscription tiers and keeps the account record in sync with
Stripe billing events.

Core rules:
- The stored account record is authoritative for entitlement checks
- Usage is counted with atomic field increments, never read-modify-write
- Billing fields are written only by the subscription reconciler
- Generation records are append-only; deleting one never refunds usage
"""

__version__ = "1.0.0"
__product__ = "AppraisalStudio"
