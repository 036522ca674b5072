# masterbook/services/notification/errors.py
"""Delivery failures raised by notification transports"""


class DeliveryFailure(Exception):
    """Message could not be delivered"""

    retryable = False

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class RetryableDeliveryFailure(DeliveryFailure):
    """Transient failure (network error, provider 5xx), safe to try again later"""

    retryable = True


class PermanentDeliveryFailure(DeliveryFailure):
    """Provider rejected the message, retrying will not help"""

    retryable = False
