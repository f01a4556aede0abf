"""Shared fixtures: in-memory DICOM datasets and a fake Milvue API."""

import json
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from io import BytesIO

import httpx
import pydicom
import pytest
from pydicom import Dataset
from pydicom.dataset import FileMetaDataset
from pydicom.uid import ExplicitVRLittleEndian, SecondaryCaptureImageStorage

from milvue.client import MilvueClient
from milvue.dicom_io import MILVUE_UID_ROOT, dataset_to_bytes
from milvue.models import PollPolicy
from milvue.multipart import build_multipart_related, parse_multipart_related
from milvue.settings import MilvueConfig

API_KEY = "test-api-key"
BASE_URL = "https://milvue.test"


def make_dataset(study_uid: str = "1.2.3", sop_uid: str = "1.2.3.1.1") -> Dataset:
    """Create a minimal Dataset that can be written as a DICOM file."""
    ds = Dataset()
    ds.StudyInstanceUID = study_uid
    ds.SeriesInstanceUID = f"{study_uid}.1"
    ds.SOPInstanceUID = sop_uid
    ds.SOPClassUID = SecondaryCaptureImageStorage
    ds.PatientID = "P001"
    ds.Modality = "DX"

    ds.file_meta = FileMetaDataset()
    ds.file_meta.TransferSyntaxUID = ExplicitVRLittleEndian
    ds.file_meta.MediaStorageSOPClassUID = SecondaryCaptureImageStorage
    ds.file_meta.MediaStorageSOPInstanceUID = sop_uid
    return ds


def make_result(study_uid: str, index: int) -> Dataset:
    """Create a dataset looking like a Milvue output."""
    return make_dataset(study_uid, f"{MILVUE_UID_ROOT}.{index}")


@dataclass
class FakeMilvue:
    """In-memory stand-in for the Milvue v3 API, served through httpx.MockTransport.

    Args:
        statuses: Status sequence returned per study, the last one repeats
        results: Result datasets returned per study
    """

    statuses: dict[str, list[str]] = field(default_factory=dict)
    results: dict[str, list[Dataset]] = field(default_factory=dict)
    post_status: int = 200
    requests: list[httpx.Request] = field(default_factory=list)
    uploads: dict[str, list[Dataset]] = field(default_factory=dict)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/v3/studies":
            parts = parse_multipart_related(request.content, request.headers.get("content-type"))
            datasets = [pydicom.dcmread(BytesIO(p.content)) for p in parts]
            for ds in datasets:
                self.uploads.setdefault(str(ds.StudyInstanceUID), []).append(ds)
            return httpx.Response(self.post_status, json={"uploaded": len(datasets)})

        if request.method == "GET" and path.endswith("/status"):
            study_uid = path.split("/")[3]
            sequence = self.statuses.get(study_uid, ["done"])
            status = sequence.pop(0) if len(sequence) > 1 else sequence[0]
            return httpx.Response(
                200,
                json={
                    "StudyInstanceUID": study_uid,
                    "status": status,
                    "version": "3.0",
                    "message": "boom" if status == "error" else "",
                },
            )

        if request.method == "GET" and path.startswith("/v3/studies/"):
            study_uid = path.split("/")[3]
            datasets = self.results.get(study_uid, [])
            if not datasets:
                return httpx.Response(204)
            body, content_type = build_multipart_related(
                [(f"{ds.SOPInstanceUID}.dcm", dataset_to_bytes(ds)) for ds in datasets]
            )
            return httpx.Response(200, content=body, headers={"content-type": content_type})

        return httpx.Response(404, text=json.dumps({"detail": "Not Found"}))

    def requests_to(self, method: str, suffix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]


@pytest.fixture
def config() -> MilvueConfig:
    return MilvueConfig(api_key=API_KEY, base_url=BASE_URL)


@pytest.fixture
def fast_policy() -> PollPolicy:
    """Poll policy that never actually waits."""
    return PollPolicy(interval=0, max_attempts=20, max_wait=60, backoff_base=0)


@pytest.fixture
def fake_milvue() -> FakeMilvue:
    return FakeMilvue()


@pytest.fixture
def make_client(
    config: MilvueConfig, fast_policy: PollPolicy
) -> Iterator[Callable[[Callable[[httpx.Request], httpx.Response]], MilvueClient]]:
    """Factory building clients bound to a MockTransport handler."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> MilvueClient:
        return MilvueClient(config, poll_policy=fast_policy, transport=httpx.MockTransport(handler))

    yield factory


@pytest.fixture
def study() -> list[Dataset]:
    """Three instances of study 1.2.3."""
    return [make_dataset("1.2.3", f"1.2.3.1.{i}") for i in range(1, 4)]


@pytest.fixture
def dataset_factory() -> Callable[..., Dataset]:
    return make_dataset


@pytest.fixture
def result_factory() -> Callable[[str, int], Dataset]:
    return make_result
