from __future__ import annotations

import logging

from ..models import Booking
from .ports import NotificationSender, ProviderSchedule

logger = logging.getLogger(__name__)


class LogNotificationSender(NotificationSender):
    """
    Confirmation "delivery" that writes a summary to the log.
    - No external service
    - Never fails
    - Neither the patient email nor the cancellation token is logged
    """

    def notify(self, booking: Booking, schedule: ProviderSchedule) -> None:
        logger.info(
            "Booking confirmation for %s: %s %s-%s with %s",
            booking.id,
            booking.appointment_date,
            booking.start_time,
            booking.end_time,
            schedule.name,
        )
