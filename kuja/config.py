from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./kuja.db"
    DATABASE_ECHO: bool = False

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Application
    PROJECT_NAME: str = "Kuja Twende Adventures"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CURRENCY: str = "KES"

    # Bookings
    BOOKING_HOLD_HOURS: int = 48

    # Payments
    PAYMENT_GATEWAY: str = "simulated"  # simulated | daraja
    MPESA_BASE_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CONSUMER_KEY: Optional[str] = None
    MPESA_CONSUMER_SECRET: Optional[str] = None
    MPESA_SHORTCODE: str = "174379"
    MPESA_PASSKEY: Optional[str] = None
    MPESA_INITIATOR_NAME: Optional[str] = None
    MPESA_SECURITY_CREDENTIAL: Optional[str] = None
    MPESA_CALLBACK_URL: str = "http://localhost:8000/api/payments/mpesa/callback"
    MPESA_REVERSAL_RESULT_URL: str = "http://localhost:8000/api/payments/mpesa/reversal-result"
    MPESA_TIMEOUT_SECONDS: int = 120
    GATEWAY_HTTP_TIMEOUT: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
