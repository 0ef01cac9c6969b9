"""Тесты Pydantic-схем API."""
import pytest
from pydantic import ValidationError

JOB_ID = "2b0f8c1e-3f0a-4c55-9a52-0d4b1f8e6a11"


class TestEnqueueRequest:
    def test_defaults(self) -> None:
        from apl_scraper.api.schemas import EnqueueRequest

        req = EnqueueRequest(job_id=JOB_ID)
        assert req.priority == 0
        assert req.delay_ms == 0

    def test_strips_whitespace(self) -> None:
        from apl_scraper.api.schemas import EnqueueRequest

        assert EnqueueRequest(job_id=f"  {JOB_ID} ").job_id == JOB_ID

    def test_invalid_uuid(self) -> None:
        from apl_scraper.api.schemas import EnqueueRequest

        with pytest.raises(ValidationError):
            EnqueueRequest(job_id="job-1")

    def test_negative_delay(self) -> None:
        from apl_scraper.api.schemas import EnqueueRequest

        with pytest.raises(ValidationError):
            EnqueueRequest(job_id=JOB_ID, delay_ms=-5)


class TestBulkEnqueueRequest:
    def test_max_length(self) -> None:
        from apl_scraper.api.schemas import BulkEnqueueRequest

        with pytest.raises(ValidationError):
            BulkEnqueueRequest(jobs=[{"id": JOB_ID}] * 501)

    def test_invalid_id_in_batch(self) -> None:
        from apl_scraper.api.schemas import BulkEnqueueRequest

        with pytest.raises(ValidationError):
            BulkEnqueueRequest(jobs=[{"id": JOB_ID}, {"id": "nope"}])


class TestQueueStatsResponse:
    def test_error_optional(self) -> None:
        from apl_scraper.api.schemas import QueueStatsResponse

        resp = QueueStatsResponse(waiting=1, active=0, completed=0, failed=0, total=1)
        assert resp.error is None
        assert resp.paused is False
