"""Commission payables desk: payout batch selection and aggregation."""

__version__ = "1.0.0"
