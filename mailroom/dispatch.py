"""Fan one newsletter out to a deduplicated recipient set.

Each recipient is an independent task: a provider rejection, transport
failure or persistence failure for one address is recorded as a failure
entry and never affects the others.  Sends are not retried, and rows for
messages already delivered are kept when other recipients fail.
"""

from __future__ import annotations

import asyncio

import structlog

from .config import DispatchConfig, SubmissionConfig
from .db.repository import SendResultRepository
from .errors import EmptyRecipientListError
from .models import DispatchSummary, OperationStatus, Recipient, SendFailure, SendJob, SendResult
from .recipients import dedup_recipients
from .submission import MailSubmitter, OutgoingEmail, build_reply_to

logger = structlog.get_logger()


class NewsletterDispatcher:
    def __init__(
        self,
        submitter: MailSubmitter,
        results: SendResultRepository,
        config: DispatchConfig,
        submission_config: SubmissionConfig,
    ) -> None:
        self._submitter = submitter
        self._results = results
        self._config = config
        self._submission_config = submission_config

    async def dispatch(self, job: SendJob) -> DispatchSummary:
        """Send *job* to every unique recipient and summarize the outcome.

        Raises :class:`EmptyRecipientListError` before sending anything when
        no addressable recipient remains after deduplication.
        """
        recipients = dedup_recipients(job.recipients)
        if not recipients:
            raise EmptyRecipientListError()

        limit = self._config.max_concurrency or len(recipients)
        semaphore = asyncio.Semaphore(limit)
        log = logger.bind(sender_id=job.sender_id, subject=job.subject)
        log.info("newsletter_dispatch_started", recipients=len(recipients), max_concurrency=limit)

        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(self._deliver(job, recipient, semaphore))
                for recipient in recipients
            ]

        failures = [failure for task in tasks if (failure := task.result()) is not None]
        summary = DispatchSummary(
            success_count=len(recipients) - len(failures),
            failures=failures,
            status=_summary_status(len(recipients), len(failures)),
        )

        if failures:
            log.error(
                "newsletter_dispatch_failures",
                success_count=summary.success_count,
                failures=[f.model_dump() for f in failures],
            )
        log.info("newsletter_dispatch_complete", success_count=summary.success_count, failed=len(failures))
        return summary

    async def _deliver(
        self,
        job: SendJob,
        recipient: Recipient,
        semaphore: asyncio.Semaphore,
    ) -> SendFailure | None:
        assert recipient.email is not None
        address = recipient.email

        async with semaphore:
            try:
                response = await self._submitter.send(self._build_email(job, address))
            except Exception as exc:
                logger.warning("newsletter_send_failed", to=address, error=str(exc))
                return SendFailure(address=address, reason=str(exc) or type(exc).__name__)

            if not response.ok:
                logger.warning("newsletter_send_rejected", to=address, reason=response.error)
                return SendFailure(address=address, reason=response.error or "Unknown error sending email")

            try:
                await self._results.record(
                    SendResult(
                        sender_id=job.sender_id,
                        receiver_id=recipient.id or address,
                        sender=job.sender_display_name,
                        receiver=address,
                        subject=job.subject,
                        body=job.html_body,
                    )
                )
            except Exception as exc:
                logger.error("send_result_insert_failed", to=address, error=str(exc))
                return SendFailure(address=address, reason=str(exc) or type(exc).__name__)

        logger.debug("newsletter_sent", to=address, message_id=response.message_id)
        return None

    def _build_email(self, job: SendJob, address: str) -> OutgoingEmail:
        return OutgoingEmail(
            sender=f"{job.sender_display_name} <{self._submission_config.sender_address}>",
            to=address,
            subject=job.subject,
            html=job.html_body,
            reply_to=build_reply_to(self._submission_config.reply_to_mailbox, job.reply_to_extension),
            attachments=list(job.attachments),
        )


def _summary_status(total: int, failed: int) -> OperationStatus:
    if failed == 0:
        return OperationStatus.OK
    if failed == total:
        return OperationStatus.FAILED
    return OperationStatus.PARTIAL
