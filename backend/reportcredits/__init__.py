"""
Report Credits - Prepaid Credit Ledger for Vehicle Analysis Reports
==================================================================

Users buy credits up front and spend them on AI analysis reports.

Money flow:
- Purchases and admin adjustments credit/debit the ledger directly
- Report jobs reserve credits first and settle after the analysis:
  confirmed on success, refunded on failure
- Settlements that fail after the outcome is fixed are flagged on the job
  and picked up by the reconciliation sweep

Services receive the database handle from bootstrap.build_services(); no
module reaches for a global connection.
"""

__version__ = "1.0.0"
__product__ = "ReportCredits"
