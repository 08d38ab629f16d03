"""
Two-tier lookup of provenance records for a candidate file.

Exact content-hash matches always win and short-circuit the perceptual scan.
Perceptual matches are leads only; every returned record has its signature
re-verified over its own stored payload, whichever tier located it.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from imprint import config
from imprint.core.database import RecordStore
from imprint.core.errors import NotFound
from imprint.core.utils import validate_hex
from imprint.models.record import ProvenanceRecord
from imprint.models.similarity import MatchStatus, MatchType, RecordMatch, VerifyResponse
from imprint.services.fingerprint import CONTENT_HASH_LENGTH
from imprint.services.image_hash import PERCEPTUAL_HASH_LENGTH, hamming_distance
from imprint.services.provenance import verify_record_signature

logger = structlog.get_logger()

STATUS_MESSAGES = {
    MatchStatus.FOUND: "Provenance record found for this exact file.",
    MatchStatus.PERCEPTUAL_MATCH: "No exact match, but visually similar registered content was found.",
    MatchStatus.NOT_FOUND: "No provenance record found for this content.",
    MatchStatus.HASH_MATCH: "File matches the registered record.",
    MatchStatus.HASH_MISMATCH: "File does not match the registered record.",
}


@dataclass
class MatchResult:
    status: MatchStatus
    matches: List[RecordMatch] = field(default_factory=list)

    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status]

    def to_response(self) -> VerifyResponse:
        return VerifyResponse(status=self.status, message=self.message, matches=self.matches)


class MatchResolver:
    """Resolve a content hash (and optional pHash) against a record store."""

    def __init__(
        self,
        store: RecordStore,
        threshold: Optional[int] = None,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.threshold = config.SIMILARITY_THRESHOLD if threshold is None else threshold
        self.max_workers = config.PERCEPTUAL_WORKERS if max_workers is None else max_workers

    def _verified_match(self, record: ProvenanceRecord, match_type: MatchType = MatchType.EXACT) -> RecordMatch:
        return RecordMatch(
            record=record,
            match_type=match_type,
            signature_valid=verify_record_signature(record),
        )

    def _score(self, perceptual_hash: str, record: ProvenanceRecord) -> Tuple[float, ProvenanceRecord]:
        return hamming_distance(perceptual_hash, record.perceptual_hash), record

    def _score_all(self, perceptual_hash: str, candidates: List[ProvenanceRecord]):
        if self.max_workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(lambda r: self._score(perceptual_hash, r), candidates))
        return [self._score(perceptual_hash, r) for r in candidates]

    def resolve(self, content_hash: str, perceptual_hash: Optional[str] = None) -> MatchResult:
        """
        Look up records for a candidate file.

        Returns FOUND with exact matches ordered by signing time, otherwise
        PERCEPTUAL_MATCH with candidates within the threshold ordered by
        distance, otherwise NOT_FOUND.

        Raises:
            MalformedInput: If either hash is not well-formed hex of the right length
        """
        content_hash = validate_hex(content_hash, "content_hash", CONTENT_HASH_LENGTH)
        if perceptual_hash:
            perceptual_hash = validate_hex(perceptual_hash, "perceptual_hash", PERCEPTUAL_HASH_LENGTH)

        exact = self.store.find_by_content_hash(content_hash)
        if exact:
            matches = [self._verified_match(r) for r in exact]
            logger.info("Exact provenance match", content_hash=content_hash, matches=len(matches))
            return MatchResult(MatchStatus.FOUND, matches)

        if perceptual_hash:
            candidates = self.store.find_all_with_perceptual_hash()
            scored = [
                (distance, record)
                for distance, record in self._score_all(perceptual_hash, candidates)
                if distance <= self.threshold
            ]
            scored.sort(key=lambda item: item[0])
            if scored:
                matches = [
                    RecordMatch(
                        record=record,
                        match_type=MatchType.PERCEPTUAL_HASH,
                        hamming_distance=int(distance),
                        signature_valid=verify_record_signature(record),
                    )
                    for distance, record in scored
                ]
                logger.info("Perceptual provenance match",
                            phash=perceptual_hash,
                            candidates=len(candidates),
                            matches=len(matches),
                            best_distance=matches[0].hamming_distance)
                return MatchResult(MatchStatus.PERCEPTUAL_MATCH, matches)

        logger.info("No provenance match", content_hash=content_hash, perceptual=bool(perceptual_hash))
        return MatchResult(MatchStatus.NOT_FOUND)

    def check_record(self, record_id: str, content_hash: str) -> MatchResult:
        """
        Compare a candidate file's hash with one specific record.

        Raises:
            NotFound: If the record does not exist
            MalformedInput: If the content hash is malformed
        """
        content_hash = validate_hex(content_hash, "content_hash", CONTENT_HASH_LENGTH)
        record = self.store.find_by_id(record_id)
        if record is None:
            raise NotFound(resource_id=record_id)

        status = MatchStatus.HASH_MATCH if record.content_hash == content_hash else MatchStatus.HASH_MISMATCH
        if status == MatchStatus.HASH_MISMATCH:
            logger.warning("Content hash mismatch", record_id=record_id, content_hash=content_hash)
        return MatchResult(status, [self._verified_match(record, MatchType.RECORD_ID)])
