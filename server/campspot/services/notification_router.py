"""Classification and fan-out of notification events."""

import asyncio
import logging
from collections import deque
from typing import Iterable, Optional, Sequence

from ..core.exceptions import DeliveryError
from ..core.observability import MetricsCollector, metrics_collector
from ..schemas.booking import Booking, ResourceType
from ..schemas.events import (
    BookingApproved,
    BookingCancelled,
    BookingCompleted,
    BookingEvent,
    BookingRejected,
    BookingSubmitted,
)
from ..schemas.notification import (
    AvailabilityChange,
    DeliveryOutcome,
    DeliveryReport,
    NotificationCategory,
    NotificationEvent,
    NotificationTarget,
    NotificationType,
    Severity,
    TargetKind,
)
from ..schemas.resource import Availability
from .event_bus import EventBus
from .notification_channels import NotificationChannel
from .subscriber_registry import SubscriberRegistry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY = 100

_AVAILABILITY_COPY = {
    NotificationCategory.LOW_STOCK: ("Low Stock Alert", "{name} is now in limited stock", Severity.WARNING),
    NotificationCategory.OUT_OF_STOCK: ("Out of Stock", "{name} is now out of stock", Severity.ERROR),
    NotificationCategory.BACK_IN_STOCK: ("Back in Stock", "{name} is back in stock!", Severity.SUCCESS),
    NotificationCategory.AVAILABILITY_CHANGE: (
        "Availability Change",
        "{name} availability changed: {previous} → {new}",
        Severity.INFO,
    ),
}


def classify(
    previous: Availability,
    new: Availability,
    previous_quantity: Optional[int] = None,
    new_quantity: Optional[int] = None,
) -> Optional[NotificationCategory]:
    """
    Map an availability transition to a category; first match wins.

    Returns None when neither availability nor quantity changed.
    """
    if previous != new:
        if new == Availability.UNAVAILABLE:
            return NotificationCategory.OUT_OF_STOCK
        if previous == Availability.AVAILABLE and new == Availability.LIMITED:
            return NotificationCategory.LOW_STOCK
        if previous == Availability.UNAVAILABLE:
            return NotificationCategory.BACK_IN_STOCK
        return NotificationCategory.AVAILABILITY_CHANGE
    if previous_quantity != new_quantity:
        return NotificationCategory.AVAILABILITY_CHANGE
    return None


def _resource_label(booking: Booking) -> str:
    return booking.resource_name or f"{booking.resource_type.value} {booking.resource_id}"


class NotificationRouter:
    """
    Routes notification events to subscribers over every configured channel.

    `route` records the event in the bounded history and schedules delivery;
    channel failures are logged and counted, never raised to the caller.
    """

    def __init__(
        self,
        registry: SubscriberRegistry,
        channels: Sequence[NotificationChannel],
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        admin_recipient_id: str = "admin-default",
        metrics: MetricsCollector = metrics_collector,
    ):
        self.registry = registry
        self.channels = list(channels)
        self.admin_recipient_id = admin_recipient_id
        self.metrics = metrics
        self._history: deque[NotificationEvent] = deque(maxlen=history_capacity)
        self._tasks: set[asyncio.Task] = set()

    def register(self, bus: EventBus) -> None:
        bus.register(BookingEvent, self.on_booking_event)

    def route(self, event: NotificationEvent) -> None:
        """Record the event and schedule its delivery without waiting for it."""
        self._history.appendleft(event)
        self.metrics.set_history_size(len(self._history))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop - notification recorded but not delivered",
                extra={"event_id": event.id, "type": event.type.value}
            )
            return

        task = loop.create_task(self._deliver_logged(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver_logged(self, event: NotificationEvent) -> None:
        try:
            await self.deliver(event)
        except Exception as e:
            logger.error(f"Notification delivery aborted: {e}", exc_info=True, extra={"event_id": event.id})

    def recipients_for(self, event: NotificationEvent) -> list[str]:
        """Recipient IDs: the targeted user, or every active subscriber wanting the category."""
        if event.target.kind == TargetKind.USER:
            return [event.target.user_id] if event.target.user_id else []
        category = event.category
        if category is None:
            return []
        return [subscriber.recipient_id for subscriber in self.registry.active_for(category)]

    async def deliver(self, event: NotificationEvent) -> DeliveryReport:
        """
        Deliver an event on every channel to each of its recipients.

        Each (recipient, channel) attempt is independent; a failing channel
        never prevents the others.
        """
        recipients = self.recipients_for(event)
        report = DeliveryReport(event_id=event.id, recipients=len(recipients))
        if not recipients:
            logger.debug("No recipients for notification", extra={"event_id": event.id})
            return report

        attempts = [
            (recipient, channel)
            for recipient in recipients
            for channel in self.channels
        ]
        results = await asyncio.gather(
            *(channel.deliver(recipient, event) for recipient, channel in attempts),
            return_exceptions=True,
        )

        for (recipient, channel), result in zip(attempts, results):
            if isinstance(result, BaseException):
                error = DeliveryError(channel.name, recipient, detail=f"{channel.name} delivery failed: {result}")
                logger.warning(
                    str(error),
                    extra={
                        "event_id": event.id,
                        "channel": channel.name,
                        "recipient_id": recipient,
                        "error_type": type(result).__name__,
                    }
                )
                self.metrics.record_delivery(channel.name, success=False)
                report.outcomes.append(
                    DeliveryOutcome(channel=channel.name, recipient_id=recipient, delivered=False, error=str(result))
                )
            else:
                self.metrics.record_delivery(channel.name, success=True)
                report.outcomes.append(
                    DeliveryOutcome(channel=channel.name, recipient_id=recipient, delivered=True)
                )

        logger.info(
            "Notification delivered",
            extra={
                "event_id": event.id,
                "type": event.type.value,
                "recipients": len(recipients),
                "failures": len(report.failures),
            }
        )
        return report

    def notify_availability_change(self, change: AvailabilityChange) -> Optional[NotificationEvent]:
        """Classify an availability change and route it as a broadcast; None when nothing changed."""
        category = classify(
            change.previous_availability,
            change.new_availability,
            change.previous_quantity,
            change.new_quantity,
        )
        if category is None:
            return None

        title, template, severity = _AVAILABILITY_COPY[category]
        message = template.format(
            name=change.resource_name,
            previous=change.previous_availability.value,
            new=change.new_availability.value,
        )
        if category == NotificationCategory.LOW_STOCK and change.new_quantity is not None:
            message += f" ({change.new_quantity} left)"

        event = NotificationEvent(
            type=NotificationType(category.value),
            title=title,
            message=message,
            severity=severity,
            target=NotificationTarget.broadcast(),
            metadata={
                "resource_id": change.resource_id,
                "resource_name": change.resource_name,
                "previous_availability": change.previous_availability.value,
                "new_availability": change.new_availability.value,
                "previous_quantity": change.previous_quantity,
                "new_quantity": change.new_quantity,
            },
            timestamp=change.timestamp,
        )
        self.route(event)
        return event

    def notify_bulk_changes(self, changes: Iterable[AvailabilityChange]) -> list[NotificationEvent]:
        """Route each change in order; unchanged entries are skipped."""
        events = []
        for change in changes:
            event = self.notify_availability_change(change)
            if event is not None:
                events.append(event)
        return events

    def on_booking_event(self, event: BookingEvent) -> Optional[NotificationEvent]:
        """Turn a booking domain event into the owner or admin notification."""
        notification = self._booking_notification(event)
        if notification is not None:
            self.route(notification)
        return notification

    def _booking_notification(self, event: BookingEvent) -> Optional[NotificationEvent]:
        booking = event.booking
        label = _resource_label(booking)
        metadata = {
            "booking_id": booking.id,
            "resource_type": booking.resource_type.value,
            "resource_id": booking.resource_id,
            "status": booking.status.value,
        }

        if isinstance(event, BookingSubmitted):
            who = booking.requester_name or booking.requester_id
            return NotificationEvent(
                type=NotificationType.ADMIN,
                title="New Booking Received",
                message=f"A new booking has been made for {label} by {who}.",
                severity=Severity.INFO,
                target=NotificationTarget.user(self.admin_recipient_id),
                metadata=metadata,
                timestamp=event.occurred_at,
            )

        owner = NotificationTarget.user(booking.requester_id)
        if isinstance(event, BookingApproved):
            title, message, severity = "Booking Confirmed!", self._confirmed_message(booking, label), Severity.SUCCESS
        elif isinstance(event, BookingRejected):
            title = "Booking Rejected"
            message = f"Your booking for {label} was rejected: {booking.rejection_reason}"
            severity = Severity.ERROR
        elif isinstance(event, BookingCancelled):
            title, message, severity = "Booking Cancelled", f"Your booking for {label} has been cancelled.", Severity.WARNING
        elif isinstance(event, BookingCompleted):
            title, message, severity = "Booking Completed", f"Your booking for {label} is complete. Thanks for staying with us!", Severity.INFO
        else:
            return None

        return NotificationEvent(
            type=NotificationType.BOOKING,
            title=title,
            message=message[:1000],
            severity=severity,
            target=owner,
            metadata=metadata,
            timestamp=event.occurred_at,
        )

    def _confirmed_message(self, booking: Booking, label: str) -> str:
        if booking.resource_type == ResourceType.ACTIVITY and booking.activity_date is not None:
            return f"Your booking for {label} on {booking.activity_date.isoformat()} has been confirmed."
        if booking.start_date is not None and booking.end_date is not None:
            return (
                f"Your booking for {label} from {booking.start_date.date().isoformat()} "
                f"to {booking.end_date.date().isoformat()} has been confirmed."
            )
        return f"Your booking for {label} has been confirmed."

    def history(self, limit: Optional[int] = None) -> list[NotificationEvent]:
        """Most recent events first."""
        events = list(self._history)
        return events[:limit] if limit is not None else events

    def mark_read(self, event_id: str) -> bool:
        for event in self._history:
            if event.id == event_id:
                event.read = True
                return True
        return False

    def clear_history(self) -> None:
        self._history.clear()
        self.metrics.set_history_size(0)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
