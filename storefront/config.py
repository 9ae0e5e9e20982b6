# storefront/config.py
from decimal import Decimal
from pathlib import Path
from typing import ClassVar, Optional

from pydantic_settings import BaseSettings

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"


class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./storefront.db"

    # Payment gateway (order/refund API + shared HMAC secret)
    PAYMENT_API_URL: str = "https://api.razorpay.com"
    PAYMENT_KEY_ID: str = ""
    PAYMENT_KEY_SECRET: str = "dev-payment-secret"
    CURRENCY: str = "INR"

    # Shipping carrier
    CARRIER_API_URL: str = "https://apiv2.shiprocket.in/v1/external"
    CARRIER_EMAIL: str = ""
    CARRIER_PASSWORD: str = ""
    CARRIER_PICKUP_LOCATION: str = "Primary"
    CARRIER_PICKUP_POSTCODE: Optional[str] = None

    # Bounded timeout for every outbound call (seconds)
    EXTERNAL_TIMEOUT_SECONDS: float = 10.0

    # Notifications are posted to this hook; unset means log only
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    ADMIN_EMAIL: Optional[str] = None

    # Pricing knobs that are not stored in the database
    SHIPPING_FLAT_RATE: Decimal = Decimal("90")
    SHIPPING_FREE_ABOVE: Optional[Decimal] = None
    REWARD_NEAR_MISS_TOLERANCE: Decimal = Decimal("5")
    COUPON_STRICT: bool = False

    FRONTEND_URL: str = "http://localhost:5173"

    class Config:
        env_file: ClassVar[str] = str(env_path)


settings = Settings()
