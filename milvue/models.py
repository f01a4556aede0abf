"""Pydantic models and enums describing Milvue API requests and responses."""

from enum import Enum
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigError


class OutputFormat(str, Enum):
    """Output format of the annotated images."""

    # Copy of the original image with the annotations in a separate DICOM tag
    OVERLAY = "overlay"
    # Copy of the original image with the annotations burnt into the pixel array
    HIGHBIT = "highbit"
    # Presentation state displayed on top of the original image
    GSPS = "gsps"
    SECONDARY_CAPTURE = "secondary_capture"


class Language(str, Enum):
    """Language of the annotations."""

    FR = "fr"
    EN = "en"
    ES = "es"
    DE = "de"
    IT = "it"
    PT = "pt"


class InferenceCommand(str, Enum):
    """Inference to run on the study."""

    # Pathology detection
    SMART_URGENCES = "smarturgences"
    # Anatomical measurements
    SMART_XPERT = "smartxpert"


class OutputSelection(str, Enum):
    """Which outputs the API returns."""

    ALL = "all"
    NO_RECAP = "no_recap"
    NO_NEGATIVES = "no_negatives"
    NONE = "none"


class RecapTheme(str, Enum):
    """Theme of the recap image."""

    DARK = "dark"
    LIGHT = "light"


class StructuredReportFormat(str, Enum):
    """Format of the structured report, if one is requested."""

    LITE = "lite"
    NORMAL = "normal"
    FULL = "full"
    NONE = "none"


class StaticReportFormat(str, Enum):
    """Format of the static report."""

    RGB = "rgb"
    PDF = "pdf"
    NONE = "none"


class ProcessingStatus(str, Enum):
    """Processing state of a study on the Milvue side."""

    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @classmethod
    def parse(cls, value: str | None) -> "ProcessingStatus":
        """Map a remote status string to a state, unknown values count as processing."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.PROCESSING

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.DONE, ProcessingStatus.ERROR)


class StatusResponse(BaseModel):
    """Body of the study status endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    study_instance_uid: str = Field(alias="StudyInstanceUID")
    status: str
    version: str | None = None
    message: str | None = None

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus.parse(self.status)


class MilvueParams(BaseModel):
    """Parameters shaping the results returned by the Milvue API.

    Every field is optional and falls back to the documented default. Instances
    are immutable; invalid values raise ConfigError at construction time.

    Example:
        ```python
        params = MilvueParams(language="en", inference_command=InferenceCommand.SMART_XPERT)
        params.to_query_params()
        # [("output_format", "overlay"), ("language", "en"), ...]
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)

    # Return a signed URL to the DICOM files instead of the files themselves,
    # not supported by MilvueClient.get
    signed_url: bool | None = None
    output_format: OutputFormat | None = OutputFormat.OVERLAY
    language: Language | None = Language.FR
    inference_command: InferenceCommand = InferenceCommand.SMART_URGENCES
    # Offset from UTC in hours, e.g. "+2"
    timezone: str | None = None
    output_selection: OutputSelection | None = OutputSelection.ALL
    recap_theme: RecapTheme | None = RecapTheme.DARK
    structured_report_format: StructuredReportFormat | None = None
    static_report_format: StaticReportFormat | None = StaticReportFormat.RGB
    # Finding categories to keep, None means all of them
    annotation_types: frozenset[str] | None = None

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid Milvue parameters: {e}") from e

    @classmethod
    def for_inference(cls, command: InferenceCommand | str, **overrides: Any) -> "MilvueParams":
        """Build parameters for one inference command."""
        return cls(inference_command=command, **overrides)

    def to_query_params(self) -> list[tuple[str, str]]:
        """Convert the parameters into an ordered list of query parameters.

        Unset fields are omitted; the order follows the field declaration order.
        """
        query_params: list[tuple[str, str]] = []
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool):
                query_params.append((name, "true" if value else "false"))
            elif isinstance(value, Enum):
                query_params.append((name, value.value))
            elif isinstance(value, frozenset):
                if not value:
                    continue
                query_params.append((name, ",".join(sorted(value))))
            else:
                query_params.append((name, str(value)))
        return query_params

    def to_query_string(self) -> str:
        """Canonical URL-encoded query string for these parameters."""
        return urlencode(self.to_query_params())


class PollPolicy(BaseModel):
    """Timing and retry budget of a poll loop.

    The n-th consecutive network failure waits
    ``min(backoff_max, backoff_base * backoff_factor ** (n - 1))`` seconds.
    """

    model_config = ConfigDict(frozen=True)

    interval: float = Field(default=3.0, ge=0)
    max_attempts: int = Field(default=400, ge=1)
    max_wait: float = Field(default=1200.0, gt=0)
    max_network_retries: int = Field(default=5, ge=0)
    backoff_base: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    backoff_max: float = Field(default=30.0, ge=0)

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid poll policy: {e}") from e

    def backoff_delay(self, failures: int) -> float:
        """Delay before retrying after ``failures`` consecutive network failures."""
        if failures < 1:
            return 0.0
        return float(min(self.backoff_max, self.backoff_base * self.backoff_factor ** (failures - 1)))
