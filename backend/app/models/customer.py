# backend/app/models/customer.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Tuple

from app.utils.helpers import iso


TIME_SLOTS: Tuple[str, ...] = (
    "8:00 AM - 10:00 AM",
    "10:00 AM - 12:00 PM",
    "12:00 PM - 2:00 PM",
    "2:00 PM - 4:00 PM",
)

SERVICES: Tuple[str, ...] = (
    "Dryer Vent Cleaning",
    "Dryer Vent Inspection",
    "HVAC Duct Cleaning",
    "Air Duct Cleaning",
)

# Identifier used when the caller could not be matched to a customer
UNKNOWN_CUSTOMER = "unknown"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    PAST = "past"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CustomerHistory:
    total_bookings: int
    cancelled_bookings: int
    avg_ticket_size: float
    last_booking_date: datetime
    # most recent first
    booking_dates: Tuple[datetime, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_bookings": self.total_bookings,
            "cancelled_bookings": self.cancelled_bookings,
            "avg_ticket_size": self.avg_ticket_size,
            "last_booking_date": iso(self.last_booking_date),
            "booking_dates": [iso(d) for d in self.booking_dates],
        }


@dataclass(frozen=True)
class Appointment:
    id: str
    date: datetime
    time_slot: str
    service: str
    status: AppointmentStatus
    customer_identifier: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": iso(self.date),
            "time_slot": self.time_slot,
            "service": self.service,
            "status": self.status.value,
            "customer_identifier": self.customer_identifier,
        }


@dataclass(frozen=True)
class CustomerProfile:
    """History plus appointment calendar synthesized for one identifier."""
    identifier: str
    history: CustomerHistory
    appointments: Tuple[Appointment, ...] = field(default_factory=tuple)

    def appointments_with_status(self, status: AppointmentStatus) -> List[Appointment]:
        return [a for a in self.appointments if a.status == status]

    def status_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in AppointmentStatus}
        for appt in self.appointments:
            counts[appt.status.value] += 1
        return counts
