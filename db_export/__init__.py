"""
DB Export - Stream read-only query results from any configured database into files.
"""

from .database import IterableRowSource, ProfileManager, SqlAlchemyRowSource
from .database.runner import ExportJob, ExportRunner
from .pipeline import ExportPipeline, ExportResult, PipelineState
from .profiles import ProfileTree
from .progress import ProgressReporter, ProgressSnapshot
from .sinks import OutputTarget, SinkWriter

__version__ = "0.1.0"
__all__ = [
    "ExportJob",
    "ExportPipeline",
    "ExportResult",
    "ExportRunner",
    "IterableRowSource",
    "OutputTarget",
    "PipelineState",
    "ProfileManager",
    "ProfileTree",
    "ProgressReporter",
    "ProgressSnapshot",
    "SinkWriter",
    "SqlAlchemyRowSource",
]
