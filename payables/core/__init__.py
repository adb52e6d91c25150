"""Selection overlay, aggregation and payload building for payout batches."""
