"""
Unit tests for dedup-aware image analysis.

The model API and the image host are both served by the fake API in
conftest; the dedup store runs on a temporary SQLite database.
"""

import pytest

from ai_vision_guard.core.dedup import ContentAddressedDedupStore, compute_content_hash
from ai_vision_guard.core.errors import EmptyResult, PayloadTooLarge, RecordNotFound
from ai_vision_guard.sdk.service import ImageAnalysisService
from ai_vision_guard.sdk.vision_client import VisionChatClient
from ai_vision_guard.storage.models import MAX_AI_RESPONSE_LENGTH, MAX_URL_LENGTH, ContentFields
from ai_vision_guard.storage.repository import ContentRepository, initialize_schema

from conftest import AUTH_KEY, completion_body

IMAGE_URL = "https://images.test/photos/cup.png"
IMAGE = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def repo(app_config):
    initialize_schema(app_config.storage.db_path)
    return ContentRepository(app_config.storage.db_path)


@pytest.fixture
def service(app_config, fake_api, repo):
    http_client = fake_api.http_client()
    client = VisionChatClient(app_config, AUTH_KEY, http_client=http_client)
    return ImageAnalysisService(client, ContentAddressedDedupStore(repo), http_client=http_client)


class TestAnalyzeImage:
    """Test analysis of images behind URLs."""

    @pytest.mark.asyncio
    async def test_new_image_is_analysed_and_stored(self, service, fake_api, repo):
        """Test unseen content is uploaded, analysed and stored."""
        fake_api.downloads[IMAGE_URL] = (200, IMAGE, {"Content-Type": "image/png"})
        fake_api.chat_script = [(200, completion_body("Cup: ceramic, glaze\nSpoon: steel"))]

        result = await service.analyze_image(IMAGE_URL)

        assert not result.cached
        assert result.record.content_hash == compute_content_hash(IMAGE)
        assert result.record.file_name == "cup.png"
        assert result.record.source_url == IMAGE_URL
        assert [s.name for s in result.subjects] == ["Cup", "Spoon"]
        assert repo.count() == 1
        assert b"image/png" in fake_api.file_requests[0].content

    @pytest.mark.asyncio
    async def test_known_image_skips_model(self, service, fake_api, repo):
        """Test a hash hit returns the stored record without calling the model."""
        fake_api.downloads[IMAGE_URL] = (200, IMAGE, {"Content-Type": "image/png"})
        first = await service.analyze_image(IMAGE_URL)

        other_url = "https://mirror.test/copy-of-cup.png"
        fake_api.downloads[other_url] = (200, IMAGE, {"Content-Type": "image/png"})
        second = await service.analyze_image(other_url)

        assert second.cached
        assert second.record == first.record
        assert len(fake_api.file_requests) == 1
        assert len(fake_api.chat_requests) == 1
        assert repo.count() == 1

    @pytest.mark.asyncio
    async def test_hash_is_case_insensitive_lookup(self, service, fake_api, repo):
        """Test a record stored under an uppercase hash is still found."""
        repo.insert(
            compute_content_hash(IMAGE).upper(),
            ContentFields(source_url="local:cup.png", file_name="cup.png", file_id="file-0"),
        )
        fake_api.downloads[IMAGE_URL] = (200, IMAGE, {"Content-Type": "image/png"})

        result = await service.analyze_image(IMAGE_URL)

        assert result.cached
        assert result.record.file_id == "file-0"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_oversized_download_rejected(self, service, fake_api, repo):
        """Test content above the ceiling never reaches the model."""
        fake_api.downloads[IMAGE_URL] = (200, b"x" * 2048, {"Content-Type": "image/png"})

        with pytest.raises(PayloadTooLarge):
            await service.analyze_image(IMAGE_URL)

        assert fake_api.requests == []
        assert repo.count() == 0

    @pytest.mark.asyncio
    async def test_overlong_url_rejected_before_any_request(self, service, fake_api, repo):
        """Test a URL too long to store costs neither a download nor a model call."""
        long_url = "https://images.test/" + "a" * MAX_URL_LENGTH + ".png"
        fake_api.downloads[long_url] = (200, IMAGE, {"Content-Type": "image/png"})

        for _ in range(2):
            with pytest.raises(ValueError, match="cannot exceed"):
                await service.analyze_image(long_url)

        assert fake_api.download_requests == []
        assert fake_api.file_requests == []
        assert fake_api.chat_requests == []
        assert repo.count() == 0

    @pytest.mark.asyncio
    async def test_empty_download(self, service, fake_api):
        fake_api.downloads[IMAGE_URL] = (200, b"", {"Content-Type": "image/png"})

        with pytest.raises(EmptyResult):
            await service.analyze_image(IMAGE_URL)

    @pytest.mark.asyncio
    async def test_empty_model_answer_stores_nothing(self, service, fake_api, repo):
        """Test a failed analysis leaves no record behind."""
        fake_api.downloads[IMAGE_URL] = (200, IMAGE, {"Content-Type": "image/png"})
        fake_api.chat_script = [(200, completion_body(""))]

        with pytest.raises(EmptyResult):
            await service.analyze_image(IMAGE_URL)

        assert repo.count() == 0


class TestAnalyzeBytes:
    """Test analysis of bytes already in hand."""

    @pytest.mark.asyncio
    async def test_unknown_mime_type_uploads_as_jpeg(self, service, fake_api):
        await service.analyze_bytes(IMAGE, "cup.webp", "local:cup.webp", mime_type="image/webp")

        assert b"image/jpeg" in fake_api.file_requests[0].content

    @pytest.mark.asyncio
    async def test_unstorable_source_rejected_before_model(self, service, fake_api, repo):
        """Test invalid record fields fail before upload and analysis."""
        with pytest.raises(ValueError, match="source_url"):
            await service.analyze_bytes(IMAGE, "cup.png", "x" * (MAX_URL_LENGTH + 1))

        assert fake_api.requests == []
        assert repo.count() == 0

    @pytest.mark.asyncio
    async def test_overlong_answer_is_truncated_and_stored(self, service, fake_api, repo):
        fake_api.chat_script = [(200, completion_body("Cup: ceramic\n" + "x" * MAX_AI_RESPONSE_LENGTH))]

        result = await service.analyze_bytes(IMAGE, "cup.png", IMAGE_URL)

        assert len(result.record.ai_response) == MAX_AI_RESPONSE_LENGTH
        assert result.subjects[0].name == "Cup"
        assert repo.count() == 1

    @pytest.mark.asyncio
    async def test_lost_race_reports_cached(self, service, fake_api, repo):
        """Test a record stored by another writer mid-analysis wins."""
        content_hash = compute_content_hash(IMAGE)
        original_upload = service.client.upload_and_analyze

        async def upload_while_racing(*args, **kwargs):
            result = await original_upload(*args, **kwargs)
            repo.insert(content_hash, ContentFields(source_url="other", file_name="cup.png", file_id="winner"))
            return result

        service.client.upload_and_analyze = upload_while_racing

        result = await service.analyze_bytes(IMAGE, "cup.png", IMAGE_URL)

        assert result.cached
        assert result.record.file_id == "winner"
        assert repo.count() == 1

    @pytest.mark.asyncio
    async def test_requires_store(self, app_config, fake_api):
        client = VisionChatClient(app_config, AUTH_KEY, http_client=fake_api.http_client())

        with pytest.raises(ValueError, match="dedup store"):
            await ImageAnalysisService(client).analyze_bytes(IMAGE, "cup.png", IMAGE_URL)


class TestAnalyzeSubjects:
    """Test material lookup for named objects."""

    @pytest.mark.asyncio
    async def test_parses_answer(self, app_config, fake_api):
        fake_api.chat_script = [(200, completion_body("Notebook: paper, cardboard\nPen: plastic, ink"))]
        client = VisionChatClient(app_config, AUTH_KEY, http_client=fake_api.http_client())

        subjects = await ImageAnalysisService(client).analyze_subjects(["Notebook", "Pen"])

        assert [str(s) for s in subjects] == ["Notebook: paper, cardboard", "Pen: plastic, ink"]
        assert "Notebook, Pen" in fake_api.chat_payload()["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_checks_linked_record(self, service, fake_api, repo):
        """Test a linked record must exist and is left unchanged."""
        record = repo.insert(
            compute_content_hash(IMAGE),
            ContentFields(source_url=IMAGE_URL, file_name="cup.png", ai_response="Cup: ceramic"),
        )
        fake_api.chat_script = [(200, completion_body("Cup: porcelain"))]

        subjects = await service.analyze_subjects(["Cup"], record_id=record.id)

        assert subjects[0].materials == ("porcelain",)
        assert repo.get_by_id(record.id) == record

    @pytest.mark.asyncio
    async def test_unknown_linked_record(self, service, fake_api):
        with pytest.raises(RecordNotFound) as exc_info:
            await service.analyze_subjects(["Cup"], record_id="missing")

        assert exc_info.value.record_id == "missing"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_linked_record_requires_store(self, app_config, fake_api):
        client = VisionChatClient(app_config, AUTH_KEY, http_client=fake_api.http_client())

        with pytest.raises(ValueError, match="dedup store"):
            await ImageAnalysisService(client).analyze_subjects(["Cup"], record_id="abc")

    @pytest.mark.asyncio
    async def test_requires_names(self, app_config, fake_api):
        client = VisionChatClient(app_config, AUTH_KEY, http_client=fake_api.http_client())

        with pytest.raises(ValueError):
            await ImageAnalysisService(client).analyze_subjects([])
        assert fake_api.requests == []
