"""Tests for mailroom.dispatch."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from mailroom.config import DispatchConfig, SubmissionConfig
from mailroom.dispatch import NewsletterDispatcher
from mailroom.errors import EmptyRecipientListError, SubmissionError
from mailroom.models import OperationStatus, OutgoingAttachment, Recipient, SendJob, SendResult
from mailroom.submission import SANDBOX_REASON, OutgoingEmail, SubmissionResponse


def _job(*emails: str | None, ids: dict[str, str] | None = None) -> SendJob:
    ids = ids or {}
    return SendJob(
        sender_id="org-1",
        sender_display_name="Acme Robotics",
        reply_to_extension="acme-robotics",
        subject="June news",
        html_body="<p>News</p>",
        recipients=[Recipient(email=e, id=ids.get(e or "")) for e in emails],
    )


def _submitter(rejected: dict[str, str] | None = None) -> AsyncMock:
    """Submitter double that rejects the given addresses with a reason."""
    rejected = rejected or {}
    submitter = AsyncMock()

    async def send(email: OutgoingEmail) -> SubmissionResponse:
        if email.to in rejected:
            return SubmissionResponse(error=rejected[email.to])
        return SubmissionResponse(message_id=f"id-{email.to}")

    submitter.send.side_effect = send
    return submitter


@pytest.fixture
def results() -> AsyncMock:
    return AsyncMock()


def _dispatcher(
    submitter: AsyncMock,
    results: AsyncMock,
    submission_config: SubmissionConfig,
    dispatch_config: DispatchConfig | None = None,
) -> NewsletterDispatcher:
    return NewsletterDispatcher(submitter, results, dispatch_config or DispatchConfig(), submission_config)


class TestDispatchOutcomes:
    @pytest.mark.asyncio
    async def test_all_delivered(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter()
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com")
        )

        assert summary.success_count == 2
        assert summary.failures == []
        assert summary.status is OperationStatus.OK
        assert results.record.await_count == 2

    @pytest.mark.asyncio
    async def test_one_rejection_is_partial(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter(rejected={"b@example.com": SANDBOX_REASON})
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com", "c@example.com")
        )

        assert summary.success_count == 2
        assert [(f.address, f.reason) for f in summary.failures] == [("b@example.com", SANDBOX_REASON)]
        assert summary.status is OperationStatus.PARTIAL
        recorded = [call.args[0].receiver for call in results.record.await_args_list]
        assert sorted(recorded) == ["a@example.com", "c@example.com"]

    @pytest.mark.asyncio
    async def test_all_rejected_is_failed(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter(rejected={"a@example.com": "bad", "b@example.com": "bad"})
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com")
        )

        assert summary.success_count == 0
        assert summary.status is OperationStatus.FAILED
        results.record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_error_is_per_recipient(
        self, results: AsyncMock, submission_config: SubmissionConfig
    ):
        submitter = AsyncMock()

        async def send(email: OutgoingEmail) -> SubmissionResponse:
            if email.to == "a@example.com":
                raise SubmissionError("Submission service unreachable: refused")
            return SubmissionResponse(message_id="ok")

        submitter.send.side_effect = send
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com")
        )

        assert summary.success_count == 1
        assert summary.failures[0].address == "a@example.com"
        assert "unreachable" in summary.failures[0].reason

    @pytest.mark.asyncio
    async def test_persistence_failure_reported(self, results: AsyncMock, submission_config: SubmissionConfig):
        async def record(result: SendResult):
            if result.receiver == "b@example.com":
                raise RuntimeError("database is locked")

        results.record.side_effect = record
        summary = await _dispatcher(_submitter(), results, submission_config).dispatch(
            _job("a@example.com", "b@example.com", "c@example.com")
        )

        assert summary.success_count == 2
        assert [(f.address, f.reason) for f in summary.failures] == [("b@example.com", "database is locked")]
        assert summary.status is OperationStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_failures_in_recipient_order(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter(rejected={"c@example.com": "x", "a@example.com": "y"})
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com", "c@example.com")
        )
        assert [f.address for f in summary.failures] == ["a@example.com", "c@example.com"]


class TestDispatchRecipients:
    @pytest.mark.asyncio
    async def test_duplicates_sent_once(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter()
        summary = await _dispatcher(submitter, results, submission_config).dispatch(
            _job("a@example.com", "b@example.com", "a@example.com", None, "c@example.com", "b@example.com")
        )

        assert submitter.send.await_count == 3
        assert summary.success_count == 3

    @pytest.mark.asyncio
    async def test_empty_recipients(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter()
        with pytest.raises(EmptyRecipientListError):
            await _dispatcher(submitter, results, submission_config).dispatch(_job())
        submitter.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_missing_addresses(self, results: AsyncMock, submission_config: SubmissionConfig):
        with pytest.raises(EmptyRecipientListError):
            await _dispatcher(_submitter(), results, submission_config).dispatch(_job(None, ""))


class TestDispatchMessage:
    @pytest.mark.asyncio
    async def test_outgoing_email_fields(self, results: AsyncMock, submission_config: SubmissionConfig):
        submitter = _submitter()
        job = _job("a@example.com")
        job.attachments = [OutgoingAttachment(filename="flyer.pdf", content=b"%PDF")]
        await _dispatcher(submitter, results, submission_config).dispatch(job)

        email: OutgoingEmail = submitter.send.await_args.args[0]
        assert email.sender == "Acme Robotics <onboarding@resend.dev>"
        assert email.to == "a@example.com"
        assert email.subject == "June news"
        assert email.html == "<p>News</p>"
        assert email.reply_to == "events+acme-robotics@gmail.com"
        assert email.attachments == [OutgoingAttachment(filename="flyer.pdf", content=b"%PDF")]

    @pytest.mark.asyncio
    async def test_send_result_fields(self, results: AsyncMock, submission_config: SubmissionConfig):
        job = _job("a@example.com", "b@example.com", ids={"a@example.com": "member-7"})
        await _dispatcher(_submitter(), results, submission_config).dispatch(job)

        by_receiver = {call.args[0].receiver: call.args[0] for call in results.record.await_args_list}
        assert by_receiver["a@example.com"] == SendResult(
            sender_id="org-1",
            receiver_id="member-7",
            sender="Acme Robotics",
            receiver="a@example.com",
            subject="June news",
            body="<p>News</p>",
            status="Sent",
        )
        # Recipients without a member id are keyed by address
        assert by_receiver["b@example.com"].receiver_id == "b@example.com"


class TestDispatchConcurrency:
    @pytest.mark.asyncio
    async def test_respects_max_concurrency(self, results: AsyncMock, submission_config: SubmissionConfig):
        in_flight = 0
        peak = 0

        async def send(email: OutgoingEmail) -> SubmissionResponse:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return SubmissionResponse(message_id="ok")

        submitter = AsyncMock()
        submitter.send.side_effect = send
        dispatcher = _dispatcher(submitter, results, submission_config, DispatchConfig(max_concurrency=2))
        summary = await dispatcher.dispatch(_job(*(f"m{i}@example.com" for i in range(6))))

        assert summary.success_count == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_unbounded_by_default(self, results: AsyncMock, submission_config: SubmissionConfig):
        in_flight = 0
        peak = 0

        async def send(email: OutgoingEmail) -> SubmissionResponse:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return SubmissionResponse(message_id="ok")

        submitter = AsyncMock()
        submitter.send.side_effect = send
        await _dispatcher(submitter, results, submission_config).dispatch(
            _job(*(f"m{i}@example.com" for i in range(5)))
        )
        assert peak == 5
