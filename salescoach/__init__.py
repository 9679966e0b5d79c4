"""Sales Coach - insights training, HITL review and scheduled WhatsApp coaching"""

__version__ = "1.0.0"
