"""Payment gateway adapters."""

from workwise_escrow.clients.payment_gateway import BasePaymentGateway, StripeGateway

__all__ = ["BasePaymentGateway", "StripeGateway"]
