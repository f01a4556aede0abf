"""
Milvue API Client.

This module provides an async client for the Milvue medical imaging analysis API.
A study goes through three calls:

1. :meth:`MilvueClient.post` uploads the DICOM instances of one study,
2. :meth:`MilvueClient.wait_for_done` polls the study status until it is processed,
3. :meth:`MilvueClient.get` downloads the annotated results as pydicom datasets.
"""

from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any

import httpx
from pydicom import Dataset

from .dicom_io import dataset_from_bytes, dataset_to_bytes, read_headers
from .exceptions import ConfigError, DecodeError, NetworkError, RemoteError, ValidationError
from .models import MilvueParams, PollPolicy, StatusResponse
from .multipart import DICOM_MEDIA_TYPE, build_multipart_related, parse_multipart_related
from .poll import PollResult, StudyPoller
from .settings import MilvueConfig, Settings
from .validation import check_study_uids
from .utils.logger import logger

API_KEY_HEADER = "x-goog-meta-owner"
STUDIES_ENDPOINT = "/v3/studies"


class MilvueClient:
    """Client for interacting with the Milvue API.

    Example:
        ```python
        config = MilvueConfig(api_key="...", base_url="https://api.milvue.com")
        async with MilvueClient(config) as client:
            study_uid = check_study_uids(datasets)
            response = await client.post(datasets)
            await client.wait_for_done(study_uid)
            results = await client.get(study_uid, MilvueParams(language="en"))
        ```
    """

    def __init__(
        self,
        config: MilvueConfig,
        poll_policy: PollPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        log_requests: bool = False,
    ) -> None:
        """Initialize Milvue client.

        Args:
            config: API key, base URL and request timeout
            poll_policy: Default policy used by wait_for_done
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
            log_requests: Enable request/response logging (default: False)
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.poll_policy = poll_policy or PollPolicy()
        self.log_requests = log_requests
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=config.timeout, transport=transport
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "MilvueClient":
        """Create a client from the environment / TOML settings."""
        return cls(settings.client_config(), poll_policy=settings.poll_policy, **kwargs)

    async def __aenter__(self) -> "MilvueClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def _headers(self, **extra: str) -> dict[str, str]:
        return {API_KEY_HEADER: self.config.api_key, **extra}

    async def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send one HTTP request, translating transport faults into NetworkError."""
        url = f"{self.base_url}{endpoint}"
        if self.log_requests:
            logger.debug(f"API Request: {method} {url}", extra={"params": kwargs.get("params")})

        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"HTTP error during {method} {url}: {e!r}")
            raise NetworkError(f"Request error: {e!r}") from e

        if self.log_requests:
            logger.debug(
                f"API Response: {response.status_code}",
                extra={"headers": dict(response.headers)},
            )
        return response

    # ==================== Submit ====================

    async def post(self, datasets: Sequence[Dataset]) -> httpx.Response:
        """Upload the DICOM instances of one study.

        Args:
            datasets: Datasets sharing one StudyInstanceUID

        Returns:
            The raw HTTP response, whatever its status code

        Raises:
            ValidationError: If the datasets do not belong to exactly one study
                or cannot be serialized
            NetworkError: On transport failure
        """
        study_uid = check_study_uids(datasets)
        logger.info(f"Preparing POST request for study {study_uid}")
        logger.info(f"Building multipart form with {len(datasets)} DICOM files")

        parts: list[tuple[str, bytes]] = []
        for i, ds in enumerate(datasets, start=1):
            sop_uid = ds.get("SOPInstanceUID")
            if not sop_uid:
                raise ValidationError(f"Dataset at position {i - 1} has no SOPInstanceUID.")
            logger.info(f"Adding DICOM file {i}/{len(datasets)} with SOPInstanceUID {sop_uid}")
            try:
                payload = dataset_to_bytes(ds)
            except (ValueError, AttributeError, TypeError) as e:
                raise ValidationError(f"Cannot serialize DICOM file {sop_uid}: {e}") from e
            parts.append((f"{sop_uid}.dcm", payload))

        return await self._post_parts(study_uid, parts)

    async def post_paths(self, paths: Sequence[str | Path]) -> httpx.Response:
        """Upload DICOM files straight from disk.

        Files are sent as stored; only their headers are parsed, to check they
        belong to one study and to name the parts.

        Raises:
            ValidationError: If the files do not belong to exactly one study
            NetworkError: On transport failure
        """
        headers = [read_headers(path) for path in paths]
        study_uid = check_study_uids(headers)
        logger.info(f"Preparing POST request for study {study_uid} ({len(paths)} files)")

        parts: list[tuple[str, bytes]] = []
        for path, ds in zip(paths, headers, strict=True):
            sop_uid = ds.get("SOPInstanceUID")
            if not sop_uid:
                raise ValidationError(f"File {path} has no SOPInstanceUID.")
            parts.append((f"{sop_uid}.dcm", Path(path).read_bytes()))
        return await self._post_parts(study_uid, parts)

    async def _post_parts(self, study_uid: str, parts: list[tuple[str, bytes]]) -> httpx.Response:
        body, content_type = build_multipart_related(parts)

        logger.info(f"Sending POST request to {self.base_url}{STUDIES_ENDPOINT}")
        response = await self._send(
            "POST",
            STUDIES_ENDPOINT,
            content=body,
            headers=self._headers(**{"Content-Type": content_type}),
        )

        if response.is_success:
            logger.info(f"POST request successfully sent for study {study_uid}.")
        else:
            logger.error(
                f"POST request failed with status code {response.status_code}: {response.text}"
            )
        return response

    # ==================== Poll ====================

    async def get_study_status(self, study_uid: str) -> StatusResponse:
        """Fetch the processing status of a study.

        Raises:
            NetworkError: On transport failure
            RemoteError: On a non-success status or an unreadable body
        """
        response = await self._send(
            "GET",
            f"{STUDIES_ENDPOINT}/{study_uid}/status",
            headers=self._headers(Accept="application/json"),
        )
        if not response.is_success:
            raise RemoteError(
                f"Status response error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return StatusResponse.model_validate(response.json())
        except ValueError as e:
            raise RemoteError(
                f"Malformed status response for study {study_uid}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def wait_for_done(
        self,
        study_uid: str,
        policy: PollPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> PollResult:
        """Wait until the study is processed.

        Args:
            study_uid: StudyInstanceUID of a submitted study
            policy: Poll policy, defaults to the client's
            sleep: Coroutine used between checks, defaults to asyncio.sleep

        Raises:
            ProcessingError: If Milvue reports an error for the study
            PollTimeoutError: If the study is not done in time
            NetworkError: If status checks keep failing
            RemoteError: If the status endpoint answers with an error status
        """
        kwargs: dict[str, Any] = {"policy": policy or self.poll_policy}
        if sleep is not None:
            kwargs["sleep"] = sleep
        poller = StudyPoller(self.get_study_status, **kwargs)
        result = await poller.run(study_uid)
        logger.info(f"Study {study_uid} processed after {result.attempts} status checks")
        return result

    # ==================== Retrieve ====================

    async def get(self, study_uid: str, params: MilvueParams | None = None) -> list[Dataset]:
        """Download the results of a processed study.

        Args:
            study_uid: StudyInstanceUID of a processed study
            params: Parameters shaping the results, defaults to MilvueParams().
                ``signed_url`` must not be set.

        Returns:
            Result datasets in the order sent by the server, empty when the
            server has no content for these parameters

        Raises:
            NetworkError: On transport failure
            RemoteError: On a non-success status
            ConfigError: If ``params.signed_url`` is set
            DecodeError: If the payload or any of its parts cannot be decoded
        """
        params = params or MilvueParams()
        if params.signed_url:
            raise ConfigError(
                "signed_url=True makes Milvue answer with signed URLs instead of DICOM files, "
                "which get() cannot decode."
            )
        logger.info(
            f"Fetching {params.inference_command.value} results for study {study_uid}"
        )
        response = await self._send(
            "GET",
            f"{STUDIES_ENDPOINT}/{study_uid}",
            params=params.to_query_params(),
            headers=self._headers(Accept=f'multipart/related; type="{DICOM_MEDIA_TYPE}"'),
        )

        if response.status_code == httpx.codes.NO_CONTENT:
            logger.warning(f"No results for study {study_uid} with {params.to_query_string()}")
            return []
        if not response.is_success:
            raise RemoteError(
                f"Status response error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        parts = parse_multipart_related(response.content, response.headers.get("content-type"))
        datasets: list[Dataset] = []
        for index, part in enumerate(parts):
            try:
                datasets.append(dataset_from_bytes(part.content))
            except DecodeError as e:
                raise DecodeError(
                    f"Part #{index} of the results of study {study_uid} is not a DICOM file: {e}"
                ) from e

        logger.info(f"Received {len(datasets)} DICOM files for study {study_uid}")
        return datasets
