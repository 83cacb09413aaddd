"""Single-instance rclone bisync job runner with recovery and status tracking."""

__version__ = "0.3.0"
