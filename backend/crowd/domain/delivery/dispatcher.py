"""Delivery dispatcher: sends a target batch and applies per-recipient outcomes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from crowd.domain.delivery.gateway import PushFailureReason, PushGateway, PushMessage, PushOutcome, PushRequest
from crowd.domain.delivery.messages import MessageBuilder
from crowd.domain.exceptions import DeliveryTransientFailure, DestinationInvalid, StoreUnavailable
from crowd.domain.models import NotificationKind, NotificationTarget, Subscriber
from crowd.domain.stores import SubscriberStore
from crowd.domain.targeting.cooldown import CooldownLedger
from crowd.obs import metrics as obs_metrics
from crowd.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    kind: NotificationKind
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    invalid_tokens_pruned: int = 0
    ledger_updates: int = 0
    failures: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def record_failure(self, reason: str) -> None:
        self.failed += 1
        self.failures[reason] = self.failures.get(reason, 0) + 1

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "invalid_tokens_pruned": self.invalid_tokens_pruned,
            "ledger_updates": self.ledger_updates,
            "failures": dict(self.failures),
            "errors": list(self.errors),
        }


def _chunks(items: Sequence[NotificationTarget], size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]


class DeliveryDispatcher:
    """Sends notifications and keeps the cooldown ledger and token set in sync.

    Gated kinds are delivered at most once per cooldown window because the
    ledger is only written for successful sends; other kinds are best effort.
    Nothing is retried here: the next trigger for the area tries again.
    """

    def __init__(
        self,
        *,
        gateway: PushGateway,
        subscribers: SubscriberStore,
        ledger: CooldownLedger,
        batch_size: Optional[int] = None,
    ) -> None:
        self.gateway = gateway
        self.subscribers = subscribers
        self.ledger = ledger
        self.batch_size = max(1, int(batch_size or settings.push_batch_size))

    async def deliver(
        self,
        targets: Sequence[NotificationTarget],
        kind: NotificationKind,
        message_builder: MessageBuilder,
        *,
        now: Optional[datetime] = None,
    ) -> DeliveryReport:
        report = DeliveryReport(kind=kind)
        if not targets:
            return report
        now = now or datetime.now(timezone.utc)
        for chunk in _chunks(list(targets), self.batch_size):
            await self._deliver_chunk(chunk, kind, message_builder, now, report)
        logger.info(
            "delivery.done",
            extra={
                "kind": kind.value,
                "attempted": report.attempted,
                "succeeded": report.succeeded,
                "failed": report.failed,
                "pruned": report.invalid_tokens_pruned,
            },
        )
        return report

    async def _deliver_chunk(
        self,
        chunk: Sequence[NotificationTarget],
        kind: NotificationKind,
        message_builder: MessageBuilder,
        now: datetime,
        report: DeliveryReport,
    ) -> None:
        sendable: List[NotificationTarget] = []
        requests: List[PushRequest] = []
        for target in chunk:
            report.attempted += 1
            try:
                message = message_builder(target)
            except Exception:
                logger.exception("delivery.build_failed", extra={"subscriber_id": target.subscriber_id})
                report.record_failure("build_failed")
                obs_metrics.inc_push_failed(kind.value, "build_failed")
                continue
            sendable.append(target)
            requests.append(PushRequest(token=target.push_token, message=message))
        if not requests:
            return

        try:
            outcomes = list(await self.gateway.send_batch(requests))
        except Exception:
            logger.exception("delivery.gateway_failed", extra={"count": len(requests)})
            outcomes = [PushOutcome.failed(PushFailureReason.TRANSIENT, detail="gateway_error") for _ in requests]
        if len(outcomes) != len(requests):
            logger.warning(
                "delivery.outcome_mismatch",
                extra={"expected": len(requests), "received": len(outcomes)},
            )
            outcomes = (outcomes + [PushOutcome.failed(PushFailureReason.TRANSIENT, detail="missing_outcome")] * len(requests))[: len(requests)]

        writes = []
        for target, outcome in zip(sendable, outcomes):
            if outcome.success:
                report.succeeded += 1
                obs_metrics.inc_push_sent(kind.value)
                if self.ledger.applies_to(kind):
                    writes.append(self._record_sent(target, kind, now, report))
                continue
            reason = outcome.reason or PushFailureReason.TRANSIENT
            report.record_failure(reason.value)
            obs_metrics.inc_push_failed(kind.value, reason.value)
            if reason is PushFailureReason.DESTINATION_INVALID:
                writes.append(self._prune_token(target, report))
        if writes:
            await asyncio.gather(*writes)

    async def send_direct(self, subscriber: Subscriber, message: PushMessage) -> None:
        """One-off push to a single subscriber outside any trigger.

        Raises DestinationInvalid (after clearing the token) or
        DeliveryTransientFailure; no cooldown is recorded.
        """
        if not subscriber.push_token:
            raise DestinationInvalid("no_push_token")
        outcomes = await self.gateway.send_batch([PushRequest(token=subscriber.push_token, message=message)])
        outcome = outcomes[0] if outcomes else PushOutcome.failed(PushFailureReason.TRANSIENT, detail="missing_outcome")
        if outcome.success:
            return
        if outcome.reason is PushFailureReason.DESTINATION_INVALID:
            await self.subscribers.clear_push_token(subscriber.id)
            obs_metrics.inc_tokens_pruned()
            raise DestinationInvalid("push_token_invalid")
        raise DeliveryTransientFailure(outcome.detail or "push_failed")

    async def _record_sent(
        self,
        target: NotificationTarget,
        kind: NotificationKind,
        now: datetime,
        report: DeliveryReport,
    ) -> None:
        try:
            await self.ledger.record_sent(target.subscriber_id, kind, now)
        except StoreUnavailable as exc:
            report.errors.append(f"cooldown:{target.subscriber_id}:{exc.reason}")
            obs_metrics.inc_cooldown_update(kind.value, "error")
            logger.warning("delivery.cooldown_write_failed", extra={"subscriber_id": target.subscriber_id})
            return
        report.ledger_updates += 1
        obs_metrics.inc_cooldown_update(kind.value, "ok")

    async def _prune_token(self, target: NotificationTarget, report: DeliveryReport) -> None:
        try:
            await self.subscribers.clear_push_token(target.subscriber_id)
        except StoreUnavailable as exc:
            report.errors.append(f"prune:{target.subscriber_id}:{exc.reason}")
            logger.warning("delivery.token_prune_failed", extra={"subscriber_id": target.subscriber_id})
            return
        report.invalid_tokens_pruned += 1
        obs_metrics.inc_tokens_pruned()


__all__ = ["DeliveryDispatcher", "DeliveryReport"]
