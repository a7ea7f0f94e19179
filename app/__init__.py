"""KYC Case Ledger application layer: configuration, models and read-side queries."""
