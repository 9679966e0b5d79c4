"""Messaging connectors for the Sales Coach platform"""

from salescoach.connectors.whatsapp import (
    BaseMessagingProvider,
    SendResult,
    TwilioWhatsAppConnector,
    MetaWhatsAppConnector,
    get_messaging_provider,
)

__all__ = [
    "BaseMessagingProvider",
    "SendResult",
    "TwilioWhatsAppConnector",
    "MetaWhatsAppConnector",
    "get_messaging_provider",
]
