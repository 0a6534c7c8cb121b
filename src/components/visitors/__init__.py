"""
Visitors component - persistent visitor profiles.
"""

from ._impl import VisitorProfileService, create_visitor_profile_service
from .component import run_upsert
from .models import VisitorTouchInput
from .ports import VisitorStorePort

__all__ = [
    "run_upsert",
    "VisitorTouchInput",
    "VisitorStorePort",
    "VisitorProfileService",
    "create_visitor_profile_service",
]
