"""
Error taxonomy shared by the connection and notification layers.

Every exception carries an ErrorKind so the dispatcher can turn it into a
structured result without inspecting exception types one by one.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Classified reasons attached to dispatch results."""

    NOT_CONNECTED = "not_connected"
    SUBJECT_NOT_FOUND = "subject_not_found"
    NO_RECIPIENT_ADDRESS = "no_recipient_address"
    ALREADY_NOTIFIED = "already_notified"  # success path
    DELIVERY_FAILED = "delivery_failed"
    UNIQUENESS_RACE = "uniqueness_race"  # benign, send already happened
    CREDENTIALS_INVALID = "credentials_invalid"
    STORE_UNAVAILABLE = "store_unavailable"
    UNEXPECTED = "unexpected"


class NotifierError(Exception):
    """Base class for classified errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class NotConnectedError(NotifierError):
    """Raised when sending while the messaging session is not connected."""

    kind = ErrorKind.NOT_CONNECTED


class SubjectNotFoundError(NotifierError):
    """Raised when the appointment (or its related rows) does not exist."""

    kind = ErrorKind.SUBJECT_NOT_FOUND


class NoRecipientAddressError(NotifierError):
    """Raised when the customer has no usable phone number."""

    kind = ErrorKind.NO_RECIPIENT_ADDRESS


class DeliveryFailedError(NotifierError):
    """Raised when the transport fails or times out while sending."""

    kind = ErrorKind.DELIVERY_FAILED


class CredentialsInvalidError(NotifierError):
    """Raised by a transport when stored credentials are rejected."""

    kind = ErrorKind.CREDENTIALS_INVALID
