"""
Sessions component - session aggregate state machine.
"""

from ._impl import (
    DEFAULT_CONFIG,
    SessionConfig,
    SessionStateMachine,
    create_session_state_machine,
    generation_id,
    is_engagement_signal,
)
from .component import build_config, run_pageleave, run_upsert
from .models import (
    PageleaveInput,
    PageleaveResult,
    SessionActivity,
    SessionEventInput,
    SessionResult,
)
from .ports import PageviewLookupPort, SessionStorePort

__all__ = [
    # Entry points
    "run_pageleave",
    "run_upsert",
    "build_config",
    # Models
    "PageleaveInput",
    "PageleaveResult",
    "SessionActivity",
    "SessionEventInput",
    "SessionResult",
    # Ports
    "PageviewLookupPort",
    "SessionStorePort",
    # Service
    "DEFAULT_CONFIG",
    "SessionConfig",
    "SessionStateMachine",
    "create_session_state_machine",
    "generation_id",
    "is_engagement_signal",
]
