"""Chat routing package: normalization, known-noun matching and the tier dispatcher."""
