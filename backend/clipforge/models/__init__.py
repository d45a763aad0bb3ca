# Models module
from clipforge.models.pipeline import PipelineJob, StageJob, Stage, StageStatus, CHAIN
from clipforge.models.export import ExportRecord, ExportStatus, InvalidTransitionError
from clipforge.models.account import PlatformAccount, AuthStatus

__all__ = [
    "PipelineJob",
    "StageJob",
    "Stage",
    "StageStatus",
    "CHAIN",
    "ExportRecord",
    "ExportStatus",
    "InvalidTransitionError",
    "PlatformAccount",
    "AuthStatus",
]
