from datetime import datetime
from typing import Optional
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings

# --- Configuration ---
class Settings(BaseSettings):
    SERVICE_NAME: str = "webhook-service"
    LOG_LEVEL: str = "INFO"

    MONGO_URL: str = "mongodb://mongodb:27017/?replicaSet=rs0"
    DATABASE_NAME: str = "payments_db"
    PAYMENTS_COLLECTION: str = "payments"
    ORDERS_COLLECTION: str = "orders"
    AUDIT_COLLECTION: str = "system_logs"
    TRANSACTION_MAX_COMMIT_TIME_MS: int = 5000

    GATEWAY_NAME: str = "sepay"
    SEPAY_WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_ACTOR_NAME: str = "SePay Webhook"
    CONFIRMED_ORDER_STATUS: str = "confirmed"
    AUDIT_IN_TRANSACTION: bool = True

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Response Models ---
class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ServiceUnavailableException(AppException):
    def __init__(self, detail: str = "Service Unhealthy"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
