# backend/app/services/profile_generator.py
"""
Deterministic customer profile synthesis.

There is no customer database behind this backend: a customer's booking
history and appointment calendar are derived from the identifier alone
(usually a phone number) using the seeded LCG in app.utils.prng.
Profiles are generated once per identifier and cached for the lifetime of
the process.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.models.customer import (
    SERVICES,
    TIME_SLOTS,
    Appointment,
    AppointmentStatus,
    CustomerHistory,
    CustomerProfile,
    UNKNOWN_CUSTOMER,
)
from app.utils.logger import logger
from app.utils.prng import SeededLCG


def is_known_identifier(identifier: Optional[str]) -> bool:
    """False for empty identifiers and the "unknown" sentinel."""
    if not identifier or not identifier.strip():
        return False
    return identifier.strip().lower() != UNKNOWN_CUSTOMER


def _anchor(now: datetime) -> datetime:
    # midnight UTC keeps dates stable for a given day
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def generate_profile(identifier: str, now: Optional[datetime] = None) -> CustomerProfile:
    """
    Synthesize history and appointments for an identifier (uncached).

    Draw order is fixed, so the same identifier always yields the same
    counts, ticket size and day offsets. Callers must pass a non-empty
    identifier.
    """
    rng = SeededLCG.for_identifier(identifier)
    anchor = _anchor(now or datetime.now(timezone.utc))

    total = rng.randint(3, 8)
    cancelled = min(rng.randint(0, 2), total)
    avg_ticket = round(rng.uniform(150.0, 400.0), 2)

    completed = total - cancelled
    # completed bookings stay older than 90 days at any hour of the anchor day
    booking_dates = sorted(
        (
            anchor - timedelta(days=rng.randint(91, 365)) + timedelta(hours=rng.randint(8, 15))
            for _ in range(completed)
        ),
        reverse=True,
    )

    history = CustomerHistory(
        total_bookings=total,
        cancelled_bookings=cancelled,
        avg_ticket_size=avg_ticket,
        last_booking_date=booking_dates[0],
        booking_dates=tuple(booking_dates),
    )

    appointments: List[Appointment] = []
    seq = 0

    def _next_id() -> str:
        nonlocal seq
        seq += 1
        return f"APT-{rng.randint(100000, 999999)}-{seq}"

    for date in booking_dates:
        appointments.append(Appointment(
            id=_next_id(),
            date=date,
            time_slot=rng.choice(TIME_SLOTS),
            service=rng.choice(SERVICES),
            status=AppointmentStatus.PAST,
            customer_identifier=identifier,
        ))

    for _ in range(cancelled):
        appointments.append(Appointment(
            id=_next_id(),
            date=anchor - timedelta(days=rng.randint(30, 365)),
            time_slot=rng.choice(TIME_SLOTS),
            service=rng.choice(SERVICES),
            status=AppointmentStatus.CANCELLED,
            customer_identifier=identifier,
        ))

    for _ in range(rng.randint(1, 3)):
        appointments.append(Appointment(
            id=_next_id(),
            date=anchor + timedelta(days=rng.randint(1, 30)),
            time_slot=rng.choice(TIME_SLOTS),
            service=rng.choice(SERVICES),
            status=AppointmentStatus.PENDING,
            customer_identifier=identifier,
        ))

    appointments.sort(key=lambda a: a.date, reverse=True)
    return CustomerProfile(identifier=identifier, history=history, appointments=tuple(appointments))


class ProfileGenerator:
    """Process-wide cache in front of generate_profile."""

    def __init__(self) -> None:
        self._profiles: Dict[str, CustomerProfile] = {}
        self._lock = threading.Lock()

    def get_profile(self, identifier: Optional[str]) -> Optional[CustomerProfile]:
        """Cached profile, or None for empty / "unknown" identifiers."""
        if not is_known_identifier(identifier):
            return None
        key = identifier.strip()
        with self._lock:
            profile = self._profiles.get(key)
            if profile is None:
                profile = generate_profile(key)
                self._profiles[key] = profile
                logger.info(
                    f"[Profile] Generated profile for {key}: "
                    f"{profile.history.total_bookings} bookings, "
                    f"{profile.history.cancelled_bookings} cancelled, "
                    f"{len(profile.appointments)} appointments"
                )
            return profile

    def get_history(self, identifier: Optional[str]) -> Optional[CustomerHistory]:
        profile = self.get_profile(identifier)
        return profile.history if profile else None

    def get_appointments(
        self,
        identifier: Optional[str],
        status: Optional[AppointmentStatus] = None,
    ) -> List[Appointment]:
        profile = self.get_profile(identifier)
        if profile is None:
            return []
        if status is None:
            return list(profile.appointments)
        return profile.appointments_with_status(status)

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()

    def __len__(self) -> int:
        return len(self._profiles)


_profile_generator = ProfileGenerator()


def get_profile_generator() -> ProfileGenerator:
    """Get global profile generator instance."""
    return _profile_generator
