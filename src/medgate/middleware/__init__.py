"""Per-operation middleware pipeline."""
