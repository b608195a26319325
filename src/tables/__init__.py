from .base import Base
from .payment import Payment, PaymentStatus, PaymentMethod, TERMINAL_STATUSES
from .webhook_event import WebhookEvent
