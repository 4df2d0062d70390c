"""Tests for the loan matching admin endpoints."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from lendmatch.api.matching import get_matching_engine, get_queue_loan_matching
from lendmatch.matching_engine.entities import MatchingReport
from lendmatch.matching_engine.reporter import finish_run_report, start_run_report
from tests.fakes import NOW


# ── Helpers ────────────────────────────────────────────────────────────────

def _stub_engine(report: MatchingReport | None = None):
    if report is None:
        report = finish_run_report(start_run_report(NOW), NOW)
    engine = MagicMock()
    engine.run_matching = AsyncMock(return_value=report)
    return engine


def _override(dependency, value):
    from lendmatch.main import app
    app.dependency_overrides[dependency] = lambda: value


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestRunMatching:

    @pytest.mark.asyncio
    async def test_run_without_body(self, client):
        engine = _stub_engine()
        _override(get_matching_engine, engine)

        resp = await client.post("/api/v1/matching/run")

        assert resp.status_code == 200
        data = resp.json()
        assert data["run_id"] == "LM-20260315-120000"
        assert data["matched_pairs"] == 0
        assert data["has_more"] is False
        request = engine.run_matching.await_args.args[0]
        assert request.batch_size is None
        assert request.has_criteria is False

    @pytest.mark.asyncio
    async def test_run_with_criteria(self, client):
        engine = _stub_engine()
        _override(get_matching_engine, engine)
        target = uuid.uuid4()

        resp = await client.post("/api/v1/matching/run", json={
            "batch_size": 10,
            "target_application_id": str(target),
            "borrower_criteria": {"max_interest_rate": "12.5"},
        })

        assert resp.status_code == 200
        request = engine.run_matching.await_args.args[0]
        assert request.batch_size == 10
        assert request.target_application_id == target
        assert str(request.borrower_criteria.max_interest_rate) == "12.5"

    @pytest.mark.asyncio
    async def test_report_errors_returned(self, client):
        report = start_run_report(NOW)
        report.errors.append("Loan matching process failed: connection refused")
        _override(get_matching_engine, _stub_engine(finish_run_report(report, NOW)))

        resp = await client.post("/api/v1/matching/run")
        assert resp.json()["errors"] == ["Loan matching process failed: connection refused"]

    @pytest.mark.asyncio
    async def test_invalid_batch_size_rejected(self, client):
        engine = _stub_engine()
        _override(get_matching_engine, engine)

        resp = await client.post("/api/v1/matching/run", json={"batch_size": 500})

        assert resp.status_code == 422
        engine.run_matching.assert_not_awaited()


class TestQueueMatching:

    @pytest.mark.asyncio
    async def test_queue_defaults(self, client):
        queue = MagicMock(return_value=MagicMock(id="task-123"))
        _override(get_queue_loan_matching, queue)

        resp = await client.post("/api/v1/matching/queue")

        assert resp.status_code == 202
        assert resp.json() == {"task_id": "task-123", "status": "queued", "priority": 10, "countdown": 0}
        queue.assert_called_once_with({}, priority=10, countdown=0)

    @pytest.mark.asyncio
    async def test_queue_with_options(self, client):
        queue = MagicMock(return_value=MagicMock(id="task-456"))
        _override(get_queue_loan_matching, queue)

        resp = await client.post(
            "/api/v1/matching/queue?priority=3&countdown=30",
            json={"batch_size": 20},
        )

        assert resp.status_code == 202
        queue.assert_called_once_with({"batch_size": 20}, priority=3, countdown=30)

    @pytest.mark.asyncio
    async def test_priority_out_of_range(self, client):
        _override(get_queue_loan_matching, MagicMock())
        resp = await client.post("/api/v1/matching/queue?priority=11")
        assert resp.status_code == 422
