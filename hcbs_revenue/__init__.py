"""
HCBS Revenue Cycle Core.

Claim lifecycle, resilient payer submission, remittance ingestion and
payment reconciliation for home and community based services billing.
"""

__version__ = "1.0.0"
