"""
HTTP client for the remote authority.

Wire contract:
    POST {base}/tasks/batch
        request  = {"operations": [{"record_id", "action", "payload"}, ...]}
        response = {"results": [{"record_id", "status", "data"?, "server_record"?, "message"?}, ...]}
    GET {base}/health -> any 2xx means reachable

Transport problems never escape send_batch() as exceptions; they come back as
a TransportFailure value so the engine can branch on data.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_CONFLICT = "conflict"
STATUS_FAILURE = "failure"


class BatchOperation(BaseModel):
    record_id: str
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class BatchSyncRequest(BaseModel):
    operations: List[BatchOperation]


# PUBLIC_INTERFACE
class RemoteTask(BaseModel):
    """
    Task fields as reported by the remote authority. Everything is optional
    because success payloads usually carry only what the server assigned.
    """

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    is_deleted: Optional[bool] = None
    updated_at: Optional[datetime] = None
    server_id: Optional[str] = None


class BatchItemResult(BaseModel):
    record_id: str
    # Unknown statuses are kept as-is and handled as failures
    status: str
    data: Optional[RemoteTask] = None
    server_record: Optional[RemoteTask] = None
    message: Optional[str] = None


class BatchSyncResponse(BaseModel):
    results: List[BatchItemResult] = Field(default_factory=list)


@dataclass(frozen=True)
class Delivered:
    """The round-trip completed; per-item outcomes follow."""

    results: List[BatchItemResult]


@dataclass(frozen=True)
class TransportFailure:
    """The round-trip itself failed; no item outcome is known."""

    reason: str


BatchOutcome = Union[Delivered, TransportFailure]


# PUBLIC_INTERFACE
class RemoteAuthorityClient:
    """Thin requests-based client for batch delivery and health probing."""

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 30.0,
        connectivity_timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.connectivity_timeout = connectivity_timeout
        self.session = session or requests.Session()

    def send_batch(self, operations: Sequence[BatchOperation]) -> BatchOutcome:
        """
        POST one batch and return Delivered(results) or TransportFailure(reason).

        Connection errors, timeouts, non-2xx answers and bodies that do not
        match the wire contract are all transport failures.
        """
        body = BatchSyncRequest(operations=list(operations)).model_dump(mode="json")
        url = f"{self.base_url}/tasks/batch"
        try:
            response = self.session.post(url, json=body, timeout=self.request_timeout)
            response.raise_for_status()
            parsed = BatchSyncResponse.model_validate(response.json())
        except requests.Timeout as e:
            return TransportFailure(f"Timed out after {self.request_timeout}s: {e}")
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            return TransportFailure(f"HTTP error {status}: {e}")
        except requests.RequestException as e:
            return TransportFailure(f"Connection error: {e}")
        except ValueError as e:
            # Covers JSON decoding errors and pydantic validation errors
            return TransportFailure(f"Malformed batch response: {e}")
        return Delivered(parsed.results)

    def ping(self) -> bool:
        """Return True when GET {base}/health answers 2xx within the connectivity timeout."""
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.connectivity_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.debug("Connectivity check failed: %s", e)
            return False
        return True
