"""
Key path helpers for object storage.

All keys are relative to the storage backend's root.
"""


def config_version_key(workspace_id: str, config_version_id: str) -> str:
    """Key for a configuration version archive."""
    return f"config/{workspace_id}/{config_version_id}.tar.gz"
