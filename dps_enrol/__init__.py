"""DPS PxPay enrolment: paid course enrolment through the PxPay hosted gateway."""

__version__ = "0.1.0"
