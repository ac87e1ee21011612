"""
Enrolment collaborators.

The engine does not own courses, users or enrolments. It reads them through an
``EnrolmentDirectory`` and grants access through an ``EnrolmentSink``; both
are supplied by the host application.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Protocol, Tuple


@dataclass(frozen=True)
class EnrolmentInstance:
    """A purchasable enrolment offering attached to a course."""

    id: int
    course_id: int
    cost: Decimal = Decimal("0")
    currency: str = ""
    enabled: bool = True
    enrol_period: Optional[int] = None  # seconds; None falls back to the site default
    enrol_start: Optional[datetime] = None
    enrol_end: Optional[datetime] = None


@dataclass(frozen=True)
class Course:
    id: int
    shortname: str
    fullname: str


@dataclass(frozen=True)
class Learner:
    id: int
    firstname: str
    lastname: str
    email: str

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class EnrolmentDirectory(Protocol):
    """Read access to the host application's enrolment records."""

    async def get_instance(self, instance_id: int) -> Optional[EnrolmentInstance]: ...

    async def get_course(self, course_id: int) -> Optional[Course]: ...

    async def get_user(self, user_id: int) -> Optional[Learner]: ...

    async def is_enrolled(self, user_id: int, instance_id: int) -> bool: ...


class EnrolmentSink(Protocol):
    """Grants course access once a payment has been approved."""

    async def grant(
        self,
        user_id: int,
        instance_id: int,
        time_start: Optional[datetime],
        time_end: Optional[datetime],
    ) -> None:
        """Enrol ``user_id`` through ``instance_id``; ``None`` bounds mean unlimited."""
        ...


def enrolment_window(
    enrol_period: int, now: datetime
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Compute the access window granted for a paid enrolment.

    Args:
        enrol_period: Enrolment duration in seconds, 0 for unlimited
        now: Current time

    Returns:
        (start, end), or (None, None) when the enrolment does not expire
    """
    if enrol_period <= 0:
        return None, None
    return now, now + timedelta(seconds=enrol_period)


def is_open(instance: EnrolmentInstance, now: datetime) -> bool:
    """Whether ``instance`` currently accepts new enrolments."""
    if not instance.enabled:
        return False
    if instance.enrol_start is not None and instance.enrol_start > now:
        return False
    if instance.enrol_end is not None and instance.enrol_end < now:
        return False
    return True
