"""Blood bank inventory ledger, request fulfillment and blood-typing workflow."""

__version__ = "1.0.0"
