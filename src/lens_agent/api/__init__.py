"""HTTP surface for LensAgent."""
