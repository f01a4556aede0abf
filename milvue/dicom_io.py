"""Reading and writing of DICOM files around the Milvue workflow."""

from collections.abc import Iterable, Sequence
from enum import Enum
from io import BytesIO
from pathlib import Path

import pydicom
from pydicom import Dataset
from pydicom.errors import InvalidDicomError

from .exceptions import DecodeError, ValidationError
from .utils.logger import logger

# SOPInstanceUID root of the instances produced by Milvue
MILVUE_UID_ROOT = "1.2.826.0.1.3680043.10.457"


class ResultNaming(str, Enum):
    """How result files are named on disk."""

    INDEX = "index"  # file0.dcm, file1.dcm, ...
    SOP = "sop"  # <SOPInstanceUID>.dcm


def dataset_to_bytes(ds: Dataset) -> bytes:
    """Serialize a dataset as a DICOM file (preamble and file meta included)."""
    buffer = BytesIO()
    pydicom.dcmwrite(buffer, ds, enforce_file_format=True)
    return buffer.getvalue()


def dataset_from_bytes(data: bytes) -> Dataset:
    """Parse a DICOM file held in memory.

    Raises:
        DecodeError: If the bytes are not a DICOM file with a SOPInstanceUID
    """
    try:
        ds = pydicom.dcmread(BytesIO(data))
    except Exception as e:
        raise DecodeError(f"Error reading DICOM file: {e}") from e

    if "SOPInstanceUID" not in ds:
        raise DecodeError("DICOM file has no SOPInstanceUID")
    return ds


def read_datasets(paths: Iterable[str | Path]) -> list[Dataset]:
    """Read DICOM files, skipping the ones that cannot be read.

    Args:
        paths: Files to read

    Returns:
        Datasets in the order of ``paths``
    """
    datasets: list[Dataset] = []
    for path in paths:
        try:
            ds = pydicom.dcmread(path)
        except (OSError, InvalidDicomError) as e:
            logger.warning(f"Skipping file {path}: {e}")
            continue
        logger.info(f"File {path} added to the dataset to be analyzed.")
        datasets.append(ds)
    return datasets


def read_headers(path: str | Path) -> Dataset:
    """Read the header of a DICOM file without its pixel data.

    Raises:
        ValidationError: If the file cannot be read as DICOM
    """
    try:
        return pydicom.dcmread(path, stop_before_pixels=True)
    except (OSError, InvalidDicomError) as e:
        raise ValidationError(f"{path} is not a valid dicom file: {e}") from e


def inventory_directory(input_dir: str | Path, recursive: bool = False) -> dict[str, list[Path]]:
    """Group the DICOM files of a directory by StudyInstanceUID.

    Only headers are read. Unreadable files, files without StudyInstanceUID and
    instances previously produced by Milvue are skipped.

    Args:
        input_dir: Directory to scan
        recursive: Also scan sub-directories

    Returns:
        Mapping of StudyInstanceUID to file paths, files sorted by path
    """
    root = Path(input_dir)
    candidates = root.rglob("*") if recursive else root.glob("*")

    inventory: dict[str, list[Path]] = {}
    for path in sorted(p for p in candidates if p.is_file()):
        try:
            ds = pydicom.dcmread(path, stop_before_pixels=True)
        except (OSError, InvalidDicomError) as e:
            logger.warning(f"{path} is not a valid dicom file: {e}")
            continue

        study_uid = str(ds.get("StudyInstanceUID", "")).strip()
        if not study_uid:
            logger.warning(f"Skipping {path}: no StudyInstanceUID")
            continue

        sop_uid = str(ds.get("SOPInstanceUID", ""))
        if sop_uid.startswith(MILVUE_UID_ROOT):
            logger.warning(f"Skipping {path}: File is from Milvue")
            continue

        inventory.setdefault(study_uid, []).append(path)

    return inventory


def write_results(
    datasets: Sequence[Dataset],
    output_dir: str | Path,
    naming: ResultNaming | str = ResultNaming.INDEX,
    start: int = 0,
) -> list[Path]:
    """Write result datasets to a directory.

    Args:
        datasets: Datasets to write, in order
        output_dir: Target directory, created if missing
        naming: File naming scheme
        start: First index used by the ``index`` naming scheme

    Returns:
        Paths of the written files
    """
    naming = ResultNaming(naming)
    out = Path(output_dir)
    if not out.exists():
        logger.info(f"Creating output directory: {out}")
        out.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    for i, ds in enumerate(datasets, start=start):
        if naming == ResultNaming.SOP:
            path = out / f"{ds.SOPInstanceUID}.dcm"
        else:
            path = out / f"file{i}.dcm"
        pydicom.dcmwrite(path, ds, enforce_file_format=True)
        logger.debug(f"Saved {path}")
        written.append(path)
    return written
