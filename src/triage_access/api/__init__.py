"""HTTP surface for the access engine."""

from triage_access.api.app import create_app
from triage_access.api.dependencies import current_principal, require_access

__all__ = ["create_app", "current_principal", "require_access"]
