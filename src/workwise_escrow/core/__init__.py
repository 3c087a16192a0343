"""Core infrastructure components."""

from workwise_escrow.core.exceptions import ServiceError
from workwise_escrow.core.state import AppState, get_app_state, init_app_state

__all__ = ["AppState", "ServiceError", "get_app_state", "init_app_state"]
