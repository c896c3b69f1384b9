"""
Services Layer for the Revenue Cycle.

Validation, claim lifecycle, submission, remittance and payment matching.
Import from the subpackages directly.
"""
