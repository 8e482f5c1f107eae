"""arq worker settings module.

Import path for arq CLI: arq wastewatch.workers.settings.WorkerSettings
"""

from __future__ import annotations

from wastewatch.workers.jobs import WorkerSettings

__all__ = ["WorkerSettings"]
