"""HTTP surface for the margin bridge engine."""
