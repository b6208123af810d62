"""HTTP API for RentalFlow."""
