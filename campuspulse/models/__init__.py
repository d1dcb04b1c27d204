"""Domain models for the campus feedback sentiment service.

Dataset and FeedbackRecord are the persisted entities; SentimentResult is
the classifier output; AggregateSummary is derived on read.
"""

from .config_models import AppConfig, ClassifierConfig, DatabaseConfig, WorkerConfig
from .dataset import Dataset, DatasetStatus, SourceKind
from .error_record import ErrorRecord
from .feedback_record import FailureKind, FeedbackRecord, RecordOutcome
from .processing_result import AnalysisRunResult, CallStatsAccumulator, ImportReceipt
from .row_data import RawRow
from .sentiment import SentimentLabel, SentimentResult, combine_results, text_hash
from .summary import AggregateSummary, LabelBreakdown

__all__ = [
    # Configuration models
    "AppConfig",
    "ClassifierConfig",
    "DatabaseConfig",
    "WorkerConfig",
    # Persisted entities
    "Dataset",
    "DatasetStatus",
    "SourceKind",
    "FeedbackRecord",
    "FailureKind",
    "RecordOutcome",
    "RawRow",
    # Classification
    "SentimentLabel",
    "SentimentResult",
    "combine_results",
    "text_hash",
    # Results
    "AggregateSummary",
    "LabelBreakdown",
    "AnalysisRunResult",
    "CallStatsAccumulator",
    "ImportReceipt",
    "ErrorRecord",
]
