"""triage-access - Access control and quota enforcement engine.

Resolves bearer credentials into principals, checks scopes, and enforces
per-category rate limits and monthly quotas against a shared store.
"""

from triage_access.application import AccessApplication, build_coordinator
from triage_access.auth.coordinator import AccessCoordinator

__version__ = "0.1.0"
__all__ = ["__version__", "AccessApplication", "AccessCoordinator", "build_coordinator"]
