"""EHR access control: role-based authorization and audited resource access."""

__version__ = "0.3.0"
