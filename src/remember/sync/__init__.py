"""Remote sync: whole-record reconciliation against a per-user remote copy."""
