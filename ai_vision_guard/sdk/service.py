"""
Dedup-aware image analysis.

Download, hash, look up; only content never seen before reaches the
paid model, and its result is stored through the dedup store's
idempotent insert.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import httpx

from ..core.dedup import ContentAddressedDedupStore, compute_content_hash
from ..core.errors import EmptyResult, RecordNotFound
from ..core.prompts import materials_prompt, subjects_prompt
from ..core.subjects import Subject, parse_subjects
from ..storage.models import MAX_AI_RESPONSE_LENGTH, ContentFields, ContentRecord
from .fetch import fetch_content
from .vision_client import ImageMimeType, VisionChatClient

logger = logging.getLogger(__name__)

_UPLOAD_MIME_TYPES = {m.value for m in ImageMimeType}


@dataclass(frozen=True)
class AnalysisResult:
    """Stored record for analysed content and whether it came from the store."""
    record: ContentRecord
    cached: bool

    @property
    def subjects(self) -> Tuple[Subject, ...]:
        return self.record.subjects


class ImageAnalysisService:
    """Runs image and subject analysis, skipping the model for known content."""

    def __init__(
        self,
        client: VisionChatClient,
        store: Optional[ContentAddressedDedupStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the service.

        Args:
            client: Authenticated model API client
            store: Dedup store; required for image analysis only
            http_client: HTTP client for downloads (created on first use if omitted)
        """
        self.client = client
        self.store = store
        self.config = client.config
        self._owns_http_client = http_client is None
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the download client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                verify=self.config.api.verify_ssl,
                headers={"User-Agent": "ai-vision-guard/0.1"},
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()

    async def analyze_image(self, url: str) -> AnalysisResult:
        """Analyze the image behind a URL.

        Raises:
            EmptyResult: If the download has no content
            PayloadTooLarge, RequestFailed, OperationTimedOut: From the download
            AuthExhausted, CredentialUnavailable: From the model API
        """
        fetched = await fetch_content(
            url,
            self._get_http_client(),
            max_bytes=self.config.limits.max_upload_bytes,
            timeout=self.config.limits.request_timeout_seconds,
        )
        return await self.analyze_bytes(
            fetched.data,
            file_name=fetched.file_name,
            source_url=url,
            mime_type=fetched.mime_type,
        )

    async def analyze_bytes(
        self,
        data: bytes,
        file_name: str,
        source_url: str,
        mime_type: Optional[str] = None,
    ) -> AnalysisResult:
        """Analyze image bytes already in hand, reusing a stored result if any.

        Raises:
            ValueError: If no store is configured, or source_url or file_name
                cannot be stored (checked before any model call)
            EmptyResult: If data is empty
        """
        if self.store is None:
            raise ValueError("a dedup store is required for image analysis")
        fields = ContentFields(source_url=source_url, file_name=file_name)
        if not data:
            raise EmptyResult(f"No content downloaded from {source_url}")

        content_hash = compute_content_hash(data)
        existing = await self.store.find_by_hash(content_hash)
        if existing is not None:
            logger.debug("Cache hit for %s (record %s)", content_hash, existing.id)
            return AnalysisResult(record=existing, cached=True)

        upload_type = mime_type if mime_type in _UPLOAD_MIME_TYPES else ImageMimeType.JPEG
        file_id, answer = await self.client.upload_and_analyze(
            data,
            file_name,
            subjects_prompt(),
            mime_type=upload_type,
        )

        if len(answer) > MAX_AI_RESPONSE_LENGTH:
            logger.warning("Truncating %d-character answer for %s", len(answer), content_hash)
            answer = answer[:MAX_AI_RESPONSE_LENGTH]
        fields = replace(fields, file_id=file_id, ai_response=answer, subjects=parse_subjects(answer))
        record = await self.store.insert_if_absent(content_hash, fields)
        return AnalysisResult(record=record, cached=record.file_id != file_id)

    async def analyze_subjects(self, names: List[str], record_id: Optional[str] = None) -> Tuple[Subject, ...]:
        """Ask which materials the named objects are made of.

        Args:
            names: Object names, typically picked from a stored record
            record_id: Stored record the names belong to; checked to exist
                before the model is asked. The record itself is not changed.

        Raises:
            ValueError: If names is empty, or record_id is given without a store
            RecordNotFound: If record_id does not match a stored record
        """
        prompt = materials_prompt(names)
        if record_id is not None:
            if self.store is None:
                raise ValueError("a dedup store is required to look up record_id")
            if await self.store.get_by_id(record_id) is None:
                raise RecordNotFound(record_id)
        answer = await self.client.send_prompt(prompt)
        return parse_subjects(answer)
