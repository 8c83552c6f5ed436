"""
Configuration module for the Order Lifecycle core.
Loads refund policy and logging settings from environment variables.
"""

import logging

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level"
    )

    # Cancellation refund policy
    default_refund_percentage: float = Field(
        default=75.0,
        alias="DEFAULT_REFUND_PERCENTAGE",
        description="Base refund percentage when no override is supplied"
    )
    min_refund_percentage: float = Field(
        default=25.0,
        alias="MIN_REFUND_PERCENTAGE",
        description="Lower clamp applied after penalties"
    )
    max_refund_percentage: float = Field(
        default=100.0,
        alias="MAX_REFUND_PERCENTAGE",
        description="Upper clamp applied after bonuses"
    )
    delivered_order_penalty: float = Field(
        default=25.0,
        alias="DELIVERED_ORDER_PENALTY",
        description="Points deducted when the order is already delivered"
    )
    past_estimated_delivery_penalty: float = Field(
        default=15.0,
        alias="PAST_ESTIMATED_DELIVERY_PENALTY",
        description="Points deducted when the request is after the estimated delivery date"
    )
    week_after_delivery_penalty: float = Field(
        default=20.0,
        alias="WEEK_AFTER_DELIVERY_PENALTY",
        description="Points deducted for requests within 7 days of delivery"
    )
    month_after_delivery_penalty: float = Field(
        default=30.0,
        alias="MONTH_AFTER_DELIVERY_PENALTY",
        description="Points deducted for requests within 30 days of delivery"
    )
    extended_after_delivery_penalty: float = Field(
        default=25.0,
        alias="EXTENDED_AFTER_DELIVERY_PENALTY",
        description="Points deducted for requests more than 30 days after delivery"
    )
    late_request_penalty: float = Field(
        default=15.0,
        alias="LATE_REQUEST_PENALTY",
        description="Points deducted when the request is late relative to the order date"
    )
    late_request_days: int = Field(
        default=7,
        alias="LATE_REQUEST_DAYS",
        description="Days after placement beyond which a request counts as late"
    )

    # Customer loyalty bonuses
    vip_customer_bonus: float = Field(
        default=10.0,
        alias="VIP_CUSTOMER_BONUS",
        description="Points added for VIP / PREMIUM customers"
    )
    regular_customer_bonus: float = Field(
        default=5.0,
        alias="REGULAR_CUSTOMER_BONUS",
        description="Points added for customers with a purchase history"
    )
    regular_customer_min_orders: int = Field(
        default=5,
        alias="REGULAR_CUSTOMER_MIN_ORDERS",
        description="Prior orders needed for the regular customer bonus"
    )

    # Flat refund rates, one per flow
    cancellation_refund_rate: float = Field(
        default=0.90,
        alias="CANCELLATION_REFUND_RATE",
        description="Share of a cancelled or returned line refunded in the order summary view"
    )
    return_refund_rate: float = Field(
        default=0.65,
        alias="RETURN_REFUND_RATE",
        description="Share of the unit price refunded for a return request"
    )
    return_window_hours: int = Field(
        default=24,
        alias="RETURN_WINDOW_HOURS",
        description="Hours after actual delivery during which a return may be requested"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()


def configure_logging(level: str = None):
    """Configure root logging from settings."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
