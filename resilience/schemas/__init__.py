from resilience.schemas.jobs import (
    FailedJobCreate,
    FailedJobListResponse,
    FailedJobResponse,
    JobStatsResponse,
    RetryRunResponse,
)
from resilience.schemas.login import (
    LoginCheckRequest,
    LoginCheckResponse,
    LoginRecordRequest,
    LoginRecordResponse,
)
from resilience.schemas.security import (
    BlockedIPCreate,
    BlockedIPResponse,
    RetentionRunResponse,
    WhitelistEntryCreate,
    WhitelistEntryResponse,
)

__all__ = [
    "BlockedIPCreate",
    "BlockedIPResponse",
    "FailedJobCreate",
    "FailedJobListResponse",
    "FailedJobResponse",
    "JobStatsResponse",
    "LoginCheckRequest",
    "LoginCheckResponse",
    "LoginRecordRequest",
    "LoginRecordResponse",
    "RetentionRunResponse",
    "RetryRunResponse",
    "WhitelistEntryCreate",
    "WhitelistEntryResponse",
]
