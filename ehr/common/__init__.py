from .logger import AUDIT_FAILURE_LOGGER, configure_logging, setup_logger

__all__ = ["AUDIT_FAILURE_LOGGER", "configure_logging", "setup_logger"]
