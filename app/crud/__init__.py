"""Read-side queries over the case ledger."""
