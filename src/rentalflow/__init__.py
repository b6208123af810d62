"""RentalFlow - event rental order lifecycle, reservations and scan ledger."""

__version__ = "0.1.0"
