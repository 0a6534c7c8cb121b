"""
Campaigns component - campaign sync, dedup and credential sets.
"""

from ._credentials import (
    VALID_PROVIDERS,
    CredentialSetService,
    mask_credentials,
    validate_credential_set,
)
from ._impl import (
    DEFAULT_CONFIG,
    CampaignSyncConfig,
    CampaignSyncEngine,
    create_campaign_sync_engine,
    dedupe_rows,
    group_key,
    matches_campaign_filter,
    merge_credentials,
    should_sync,
    sync_window,
    to_data_row,
)
from ._providers import (
    GoogleAdsAdapter,
    MailchimpAdapter,
    MetaAdsAdapter,
    ProviderConfig,
    build_adapters,
    date_chunks,
)
from ._results import OBJECTIVE_RESULT_MAP, PURCHASE_ACTIONS, ResultMatch, cost_per_result, pick_result
from .component import build_config, build_provider_config, run_cycle, run_manual_sync
from .models import (
    CampaignRowData,
    CampaignStorageError,
    CampaignSyncError,
    CampaignValidationError,
    CredentialSetInput,
    IntegrationDisabledError,
    IntegrationNotFoundError,
    ProviderError,
    SyncErrorRecord,
    SyncSummary,
    SyncWindow,
)
from .ports import CampaignStorePort, CredentialSetStorePort, ProviderAdapterPort

__all__ = [
    # Entry points
    "run_cycle",
    "run_manual_sync",
    "build_config",
    "build_provider_config",
    # Models
    "CampaignRowData",
    "CredentialSetInput",
    "SyncErrorRecord",
    "SyncSummary",
    "SyncWindow",
    "CampaignValidationError",
    # Errors
    "CampaignStorageError",
    "CampaignSyncError",
    "IntegrationDisabledError",
    "IntegrationNotFoundError",
    "ProviderError",
    # Ports
    "CampaignStorePort",
    "CredentialSetStorePort",
    "ProviderAdapterPort",
    # Engine
    "DEFAULT_CONFIG",
    "CampaignSyncConfig",
    "CampaignSyncEngine",
    "create_campaign_sync_engine",
    "dedupe_rows",
    "group_key",
    "matches_campaign_filter",
    "merge_credentials",
    "should_sync",
    "sync_window",
    "to_data_row",
    # Providers
    "GoogleAdsAdapter",
    "MailchimpAdapter",
    "MetaAdsAdapter",
    "ProviderConfig",
    "build_adapters",
    "date_chunks",
    # Results
    "OBJECTIVE_RESULT_MAP",
    "PURCHASE_ACTIONS",
    "ResultMatch",
    "cost_per_result",
    "pick_result",
    # Credential sets
    "VALID_PROVIDERS",
    "CredentialSetService",
    "mask_credentials",
    "validate_credential_set",
]
