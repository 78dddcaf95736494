from backend.config.settings import config_settings
from backend.orders.gateways import PaymentGateway, PayPalGateway, StripeGateway
from backend.schema.full_schema import PaymentProvider


def get_stripe_gateway() -> StripeGateway:
    return StripeGateway(
        secret_key=config_settings.STRIPE_SECRET_KEY,
        webhook_secret=config_settings.STRIPE_WEBHOOK_SECRET,
        frontend_url=config_settings.FRONTEND_URL,
        tolerance=config_settings.STRIPE_WEBHOOK_TOLERANCE,
    )


def get_paypal_gateway() -> PayPalGateway:
    return PayPalGateway(
        client_id=config_settings.PAYPAL_CLIENT_ID,
        client_secret=config_settings.PAYPAL_CLIENT_SECRET,
        webhook_id=config_settings.PAYPAL_WEBHOOK_ID,
        api_base=config_settings.PAYPAL_API_BASE,
        rate=config_settings.INR_TO_USD_RATE,
        currency=config_settings.PAYPAL_SETTLEMENT_CURRENCY,
        frontend_url=config_settings.FRONTEND_URL,
        timeout=config_settings.PROVIDER_TIMEOUT_SECONDS,
    )


GATEWAY_FACTORIES = {
    PaymentProvider.STRIPE: get_stripe_gateway,
    PaymentProvider.PAYPAL: get_paypal_gateway,
}


def gateway_for(provider: PaymentProvider) -> PaymentGateway:
    factory = GATEWAY_FACTORIES.get(PaymentProvider(provider))
    if factory is None:
        raise ValueError(f"no payment gateway for provider {provider}")
    return factory()

