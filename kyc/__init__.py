"""KYC case ledger: lifecycle, mutations, amendment pipeline and derived attributes."""
