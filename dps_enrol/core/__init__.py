"""Core transaction lifecycle logic."""
from .engine import Checkout, Confirmation, EnrolmentEngine
from .enrolment import Course, EnrolmentDirectory, EnrolmentInstance, EnrolmentSink, Learner
from .store import NewTransaction, TransactionStore

__all__ = [
    "Checkout",
    "Confirmation",
    "Course",
    "EnrolmentDirectory",
    "EnrolmentEngine",
    "EnrolmentInstance",
    "EnrolmentSink",
    "Learner",
    "NewTransaction",
    "TransactionStore",
]
