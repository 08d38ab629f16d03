"""
HTTP client for an Imprint server.
"""

from typing import Any, Dict, List, Optional

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from imprint import config
from imprint.core.errors import (
    ActionExpired,
    HashMismatch,
    MalformedInput,
    NotFound,
    ProvenanceError,
    RecordStoreError,
    SignatureInvalid,
)
from imprint.models.record import ProvenanceRecord, RecordCreate
from imprint.models.similarity import VerifyResponse
from imprint.services.signing import ActionAuthorization

logger = structlog.get_logger()


def _error_from_body(body: Dict[str, Any]) -> Optional[ProvenanceError]:
    code = body.get("error")
    message = body.get("message") or ""
    if code == MalformedInput.code:
        field = body.get("field") or "request"
        prefix = f"{field}: "
        return MalformedInput(field, message[len(prefix):] if message.startswith(prefix) else message)
    if code == NotFound.code:
        return NotFound(message)
    if code == HashMismatch.code:
        return HashMismatch(expected="", actual="")
    for error_class in (SignatureInvalid, ActionExpired, RecordStoreError):
        if code == error_class.code:
            return error_class(message)
    return None


class ImprintClient:
    """Thin wrapper over the Imprint HTTP API; errors come back as provenance exceptions."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or config.SERVER_URL).rstrip("/")
        self.timeout = config.CLIENT_TIMEOUT if timeout is None else timeout

        self.session = requests.Session()
        # only idempotent methods are retried
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=frozenset({"GET", "HEAD", "OPTIONS"}),
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error = _error_from_body(body) if isinstance(body, dict) else None
            logger.debug("Request failed", method=method, url=url, status_code=response.status_code)
            if error is not None:
                raise error
            response.raise_for_status()
        return response.json()

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def create_record(self, record: RecordCreate) -> str:
        """Submit a signed record and return the id the server assigned."""
        body = self._request("POST", "/records", json=record.model_dump(mode="json"))
        logger.info("Record submitted", record_id=body["id"], server=self.base_url)
        return body["id"]

    def get_record(self, record_id: str) -> ProvenanceRecord:
        return ProvenanceRecord(**self._request("GET", f"/records/{record_id}"))

    def find_by_content_hash(self, content_hash: str) -> List[ProvenanceRecord]:
        try:
            rows = self._request("GET", f"/records/by-hash/{content_hash}")
        except NotFound:
            return []
        return [ProvenanceRecord(**row) for row in rows]

    def list_records(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit else None
        return self._request("GET", "/records", params=params)

    def verify(
        self,
        content_hash: str,
        perceptual_hash: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> VerifyResponse:
        payload = {"content_hash": content_hash, "perceptual_hash": perceptual_hash, "record_id": record_id}
        return VerifyResponse(**self._request("POST", "/verify", json=payload))

    def delete_record(self, authorization: ActionAuthorization, verify_only: bool = False) -> Dict[str, Any]:
        body = {
            "timestamp": authorization.timestamp,
            "signature": authorization.signature,
            "verify_only": verify_only,
        }
        return self._request("DELETE", f"/records/{authorization.resource_id}", json=body)

    def close(self) -> None:
        self.session.close()
