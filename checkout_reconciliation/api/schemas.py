"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class StartCheckoutRequest(BaseModel):
    """Request schema for starting a checkout from the caller's cart."""

    shipping_address: Optional[Dict[str, Any]] = Field(
        default=None, description="Shipping address snapshot"
    )
    shipping_cost_cents: int = Field(default=0, ge=0, description="Quoted shipping cost in cents")
    shipping_service_code: Optional[str] = Field(default=None, description="Carrier service code")
    shipping_service_name: Optional[str] = Field(default=None, description="Carrier service name")
    coupon_code: Optional[str] = Field(default=None, description="Optional coupon code")

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon_code(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank coupon code as no coupon."""
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "shipping_address": {
                        "name": "Ada Lovelace",
                        "line1": "12 Analytical Row",
                        "city": "London",
                        "postal_code": "N1 9GU",
                        "country": "GB",
                    },
                    "shipping_cost_cents": 500,
                    "shipping_service_code": "03",
                    "shipping_service_name": "Ground",
                    "coupon_code": "WELCOME10",
                }
            ]
        }
    }


class RecordPaymentLinkRequest(BaseModel):
    """Request schema for recording the hosted payment link of a session."""

    checkout_link_id: str = Field(..., min_length=1, description="Gateway checkout link ID")
    external_order_id: Optional[str] = Field(default=None, description="Gateway order ID")
    checkout_url: Optional[str] = Field(default=None, description="Hosted checkout URL")


class VerifyPaymentRequest(BaseModel):
    """Request schema for verifying a payment after the gateway redirect."""

    external_payment_id: Optional[str] = Field(
        default=None, description="Payment ID from the gateway redirect"
    )
    external_order_id: Optional[str] = Field(
        default=None, description="Gateway order ID from the redirect"
    )
    client_outcome: Optional[str] = Field(
        default=None, description="Outcome reported by the client (e.g. 'cancelled')"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "external_payment_id": "pi_3OaBcDeFgHiJkLmN0",
                    "external_order_id": "order_8f14e45fceea167a",
                    "client_outcome": None,
                }
            ]
        }
    }


class CheckoutSessionResponse(BaseModel):
    """Response schema for a checkout session."""

    id: UUID = Field(..., description="Checkout session ID")
    status: str = Field(..., description="Session status")
    payment_status: str = Field(..., description="Payment sub-status")
    subtotal_cents: int = Field(..., description="Subtotal in cents")
    discount_cents: int = Field(..., description="Discount in cents")
    shipping_cost_cents: int = Field(..., description="Shipping cost in cents")
    total_cents: int = Field(..., description="Total in cents")
    currency: str = Field(..., description="Currency code")
    coupon_code: Optional[str] = Field(default=None, description="Applied coupon code")
    checkout_link_id: Optional[str] = Field(default=None, description="Gateway checkout link ID")
    external_order_id: Optional[str] = Field(default=None, description="Gateway order ID")
    checkout_url: Optional[str] = Field(default=None, description="Hosted checkout URL")
    failure_reason: Optional[str] = Field(default=None, description="Failure reason")
    order_id: Optional[UUID] = Field(default=None, description="Resulting order ID")
    expires_at: datetime = Field(..., description="Session expiry")
    created_at: datetime = Field(..., description="Creation timestamp")

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    """Response schema for an order."""

    id: UUID = Field(..., description="Order ID")
    checkout_session_id: Optional[UUID] = Field(default=None, description="Source session ID")
    items: List[Dict[str, Any]] = Field(..., description="Items copied from the session")
    subtotal_cents: int = Field(..., description="Subtotal in cents")
    shipping_cost_cents: int = Field(..., description="Shipping cost in cents")
    total_cents: int = Field(..., description="Total in cents")
    currency: str = Field(..., description="Currency code")
    payment_method: str = Field(..., description="Payment method")
    payment_status: str = Field(..., description="Payment status")
    payment_external_payment_id: Optional[str] = Field(
        default=None, description="Gateway payment ID"
    )
    payment_external_order_id: Optional[str] = Field(default=None, description="Gateway order ID")
    fulfillment_status: str = Field(..., description="Fulfillment status")
    coupon_code: Optional[str] = Field(default=None, description="Applied coupon code")
    coupon_discount_cents: int = Field(default=0, description="Coupon discount in cents")
    created_at: datetime = Field(..., description="Creation timestamp")

    model_config = {"from_attributes": True}


class VerifyPaymentResponse(BaseModel):
    """Response schema for payment verification."""

    order: Optional[OrderResponse] = Field(default=None, description="Order, when paid")
    payment_status: str = Field(..., description="'paid' or 'failed'")
    gateway_status: str = Field(..., description="Status reported by the gateway")
    message: Optional[str] = Field(default=None, description="Failure reason")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order": None,
                    "payment_status": "failed",
                    "gateway_status": "NOT_FOUND",
                    "message": "No payment found for this checkout",
                }
            ]
        }
    }


class CleanupResponse(BaseModel):
    """Response schema for a cleanup pass."""

    stripped: int = Field(..., description="Completed sessions stripped of snapshots")
    expired: int = Field(..., description="Pending sessions expired")
    purged: int = Field(..., description="Failed/expired sessions deleted")


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    message: Optional[str] = Field(default=None, description="Status message")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
