"""Study identity checks run before anything is sent to the Milvue API."""

from collections.abc import Sequence

from pydicom import Dataset

from .exceptions import ValidationError


def get_study_uid(ds: Dataset) -> str | None:
    """Read the StudyInstanceUID of a dataset, None when missing or empty."""
    value = ds.get("StudyInstanceUID")
    if value is None:
        return None
    uid = str(value).strip()
    return uid or None


def check_study_uids(datasets: Sequence[Dataset]) -> str:
    """Check that every dataset belongs to the same study.

    Args:
        datasets: Datasets to be submitted together

    Returns:
        The StudyInstanceUID shared by all datasets

    Raises:
        ValidationError: If the sequence is empty, a dataset has no
            StudyInstanceUID, or more than one UID is found
    """
    if not datasets:
        raise ValidationError("No DICOM dataset provided.")

    uids: list[str] = []
    for index, ds in enumerate(datasets):
        uid = get_study_uid(ds)
        if uid is None:
            raise ValidationError(f"Dataset at position {index} has no StudyInstanceUID.")
        if uid not in uids:
            uids.append(uid)

    if len(uids) > 1:
        raise ValidationError(
            f"More than one Study Instance UID found among files to be uploaded: {', '.join(uids)}"
        )
    return uids[0]
