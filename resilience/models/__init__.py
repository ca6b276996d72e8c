from resilience.models.auth_session import AuthSession
from resilience.models.blocked_ip import BlockedIP
from resilience.models.failed_job import FailedJob, JobStatus, JobType
from resilience.models.ip_whitelist import IPWhitelistEntry
from resilience.models.login_attempt import LoginAttempt
from resilience.models.notification import Notification
from resilience.models.setting import Setting
from resilience.models.system_log import SystemLog

__all__ = [
    "AuthSession",
    "BlockedIP",
    "FailedJob",
    "IPWhitelistEntry",
    "JobStatus",
    "JobType",
    "LoginAttempt",
    "Notification",
    "Setting",
    "SystemLog",
]
