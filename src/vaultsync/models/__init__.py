from vaultsync.models.base import Base
from vaultsync.models.secret_state import SecretState
from vaultsync.models.sync_log import SyncLog

__all__ = ["Base", "SecretState", "SyncLog"]
