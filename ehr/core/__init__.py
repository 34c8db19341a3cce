"""Core authorization and audit components."""
