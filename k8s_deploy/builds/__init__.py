"""Container build module.

This module handles:
- Build context archival
- Build daemon submission and log streaming
- Composition of both into a single build
"""

from k8s_deploy.builds.archive import archive_directory, iter_context_entries
from k8s_deploy.builds.daemon import BuildSubmitter
from k8s_deploy.builds.service import build_container

__all__ = [
    "BuildSubmitter",
    "archive_directory",
    "build_container",
    "iter_context_entries",
]
