"""Database layer for the EHR service."""
