from backend.common.logging_setup import get_logger

logger = get_logger("grocer.orders")

ORDER_ID_PREFIX = "ORD-"
COD_BATCH_PREFIX = "COD-"

# adjustable quantity ceiling for hosted checkout when a product has no stock figure
DEFAULT_STOCK_CEILING = 100

STRIPE_COMPLETION_EVENTS = frozenset({"checkout.session.completed"})
PAYPAL_COMPLETION_EVENTS = frozenset({"CHECKOUT.ORDER.APPROVED", "PAYMENT.CAPTURE.COMPLETED"})

PAYPAL_ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
PAYPAL_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"

PAYPAL_TRANSMISSION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-cert-url",
    "paypal-auth-algo",
    "paypal-transmission-sig",
)

FALLBACK_COUNTRY_CODE = "IN"

COUNTRY_CODES = {
    "india": "IN",
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "united kingdom": "GB",
    "uk": "GB",
    "canada": "CA",
    "australia": "AU",
    "germany": "DE",
    "france": "FR",
    "japan": "JP",
    "china": "CN",
    "singapore": "SG",
    "united arab emirates": "AE",
    "uae": "AE",
    "nepal": "NP",
    "bangladesh": "BD",
    "sri lanka": "LK",
    "pakistan": "PK",
    "italy": "IT",
    "spain": "ES",
    "netherlands": "NL",
    "new zealand": "NZ",
    "south africa": "ZA",
    "brazil": "BR",
    "mexico": "MX",
}

ERR_NO_ITEMS = "No items to order"
ERR_TOTAL_AND_ADDRESS = "Total amount and addressId are required"
ERR_ITEMS_AND_ADDRESS = "Provide list_items and addressId"
