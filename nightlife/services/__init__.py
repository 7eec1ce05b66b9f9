from .access_policy import AccessPolicy
from .admission import AdmissionDecision, AdmissionKind, AdmissionRules
from .checkout_service import CartLine, CheckoutService
from .pricing import Available, DynamicPricing, Unavailable, display_price
from .qr_codec import InvalidQRCode, QRCodec, QRPayload, QRType
from .redemption_service import RedemptionError, RedemptionResult, RedemptionService
from .schedule import EventOverride, VenueClock, VenueSchedule
from .sse import ConnectionRegistry
from .webhook_service import WebhookService
from .wompi_client import WompiClient

__all__ = [
    "AccessPolicy",
    "AdmissionDecision",
    "AdmissionKind",
    "AdmissionRules",
    "CartLine",
    "CheckoutService",
    "Available",
    "DynamicPricing",
    "Unavailable",
    "display_price",
    "InvalidQRCode",
    "QRCodec",
    "QRPayload",
    "QRType",
    "RedemptionError",
    "RedemptionResult",
    "RedemptionService",
    "EventOverride",
    "VenueClock",
    "VenueSchedule",
    "ConnectionRegistry",
    "WebhookService",
    "WompiClient",
]
