# Copyright (c) 2025 Trae AI. All rights reserved.

import hashlib


def hash_path(remote_path: str) -> str:
    """
    Stable item id for a remote path. Same path, same id, across processes and versions.
    """
    return hashlib.sha256(remote_path.encode("utf-8")).hexdigest()[:16]
