"""Async client for the Milvue medical imaging analysis API.

Submit the DICOM instances of a study, wait for Milvue to process them and
download the annotated results::

    async with MilvueClient(config) as client:
        study_uid = check_study_uids(datasets)
        await client.post(datasets)
        await client.wait_for_done(study_uid)
        results = await client.get(study_uid, MilvueParams(language=Language.EN))
"""

from milvue.client import MilvueClient
from milvue.exceptions import (
    ConfigError,
    DecodeError,
    MilvueError,
    NetworkError,
    NoInferenceCommandError,
    PollTimeoutError,
    ProcessingError,
    RemoteError,
    ValidationError,
)
from milvue.models import (
    InferenceCommand,
    Language,
    MilvueParams,
    OutputFormat,
    OutputSelection,
    PollPolicy,
    ProcessingStatus,
    RecapTheme,
    StaticReportFormat,
    StatusResponse,
    StructuredReportFormat,
)
from milvue.poll import PollResult, StudyPoller
from milvue.settings import MilvueConfig, MilvueEnvironment, Settings, get_settings
from milvue.validation import check_study_uids

__all__ = [
    "ConfigError",
    "DecodeError",
    "InferenceCommand",
    "Language",
    "MilvueClient",
    "MilvueConfig",
    "MilvueEnvironment",
    "MilvueError",
    "MilvueParams",
    "NetworkError",
    "NoInferenceCommandError",
    "OutputFormat",
    "OutputSelection",
    "PollPolicy",
    "PollResult",
    "PollTimeoutError",
    "ProcessingError",
    "ProcessingStatus",
    "RecapTheme",
    "RemoteError",
    "Settings",
    "StaticReportFormat",
    "StatusResponse",
    "StructuredReportFormat",
    "StudyPoller",
    "ValidationError",
    "check_study_uids",
    "get_settings",
]
