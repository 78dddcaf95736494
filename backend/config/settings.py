from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGO: str = "HS256"
    FRONTEND_URL: str = "http://localhost:5173"

    STORE_CURRENCY: str = "INR"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_WEBHOOK_ID: str = ""
    PAYPAL_API_BASE: str = "https://api-m.sandbox.paypal.com"
    PAYPAL_SETTLEMENT_CURRENCY: str = "USD"
    # fixed rate, not refreshed from any market feed
    INR_TO_USD_RATE: str = "0.012"

    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
