"""HTTP surface for the clinic booking engine."""
