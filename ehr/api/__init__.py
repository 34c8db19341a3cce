"""HTTP boundary for the EHR service."""
