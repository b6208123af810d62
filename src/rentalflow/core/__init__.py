"""Domain logic for RentalFlow."""
