from rclone_sync_helper.providers.rclone_bisync.runner import JobRunner, RunResult
from rclone_sync_helper.providers.rclone_bisync.status import StatusStore, SyncState

__all__ = ["JobRunner", "RunResult", "StatusStore", "SyncState"]
