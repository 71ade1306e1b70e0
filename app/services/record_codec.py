"""
Resume record codec.

Records live in the key-value store as JSON strings:

    {"id", "resumePath", "imagePath", "companyName", "jobTitle",
     "jobDescription", "feedback", "createdAt"}

`feedback` is "" while the analysis is pending and a JSON object once it has
completed. Decoding accepts partially written and older record shapes.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.exceptions import RecordDecodeError

RECORD_PREFIX = "resume:"


def storage_key_for(record_id: str, prefix: str = RECORD_PREFIX) -> str:
    return f"{prefix}{record_id}"


@dataclass(frozen=True)
class ResumeRecord:
    id: str
    resume_path: Optional[str] = None
    image_path: Optional[str] = None
    company_name: str = ""
    job_title: str = ""
    job_description: str = ""
    feedback: Optional[Dict[str, Any]] = None
    created_at: Optional[int] = None
    # Key the record was written or discovered under; not part of the payload
    storage_key: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return not self.feedback

    @property
    def key(self) -> str:
        return self.storage_key or storage_key_for(self.id)


def encode_record(record: ResumeRecord) -> str:
    return json.dumps({
        "id": record.id,
        "resumePath": record.resume_path,
        "imagePath": record.image_path,
        "companyName": record.company_name,
        "jobTitle": record.job_title,
        "jobDescription": record.job_description,
        "feedback": record.feedback if record.feedback else "",
        "createdAt": record.created_at,
    })


def _decode_feedback(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, str) and value.strip():
        # Older records stored the feedback double-encoded
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if isinstance(value, dict) and value:
        return value
    return None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _path(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _timestamp(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def decode_record(raw: str, storage_key: Optional[str] = None) -> ResumeRecord:
    """Parse a stored payload. Raises RecordDecodeError when it is not a usable record."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise RecordDecodeError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RecordDecodeError(f"expected an object, got {type(data).__name__}")

    record_id = data.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise RecordDecodeError("record has no id")

    return ResumeRecord(
        id=record_id,
        resume_path=_path(data.get("resumePath")),
        image_path=_path(data.get("imagePath")),
        company_name=_text(data.get("companyName")),
        job_title=_text(data.get("jobTitle")),
        job_description=_text(data.get("jobDescription")),
        feedback=_decode_feedback(data.get("feedback")),
        created_at=_timestamp(data.get("createdAt")),
        storage_key=storage_key,
    )
