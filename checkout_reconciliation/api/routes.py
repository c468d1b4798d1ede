"""
API routes for checkout reconciliation.
"""
import uuid
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from checkout_reconciliation.core.checkout import (
    CheckoutAccessDeniedError,
    CheckoutError,
    CheckoutNotFoundError,
    CheckoutService,
    CheckoutStateError,
)
from checkout_reconciliation.core.cleanup import SessionCleaner
from checkout_reconciliation.core.reconciliation import (
    OrderAccessDeniedError,
    OrderNotFoundError,
    ReconciliationEngine,
    UnsupportedPaymentMethodError,
    VerificationRequest,
    VerificationResult,
)
from checkout_reconciliation.monitoring.health import HealthCheck

from .schemas import (
    CheckoutSessionResponse,
    CleanupResponse,
    HealthCheckResponse,
    RecordPaymentLinkRequest,
    StartCheckoutRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_checkout_service(request: Request) -> CheckoutService:
    return request.app.state.checkout_service


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.reconciliation_engine


def get_session_cleaner(request: Request) -> SessionCleaner:
    return request.app.state.session_cleaner


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


async def get_user_id(request: Request) -> str:
    """
    Caller identity set by the upstream auth layer.

    Raises:
        HTTPException: 401 when the identity header is missing
    """
    header = request.app.state.settings.user_id_header
    user_id = request.headers.get(header, "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_id


def _verification_response(result: VerificationResult) -> Dict[str, Any]:
    return {
        "order": result.order,
        "payment_status": result.payment_status,
        "gateway_status": result.gateway_status,
        "message": result.message,
    }


@checkout_router.post(
    "/sessions",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Snapshot the caller's cart into a pending checkout session",
)
async def start_checkout(
    request: StartCheckoutRequest,
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Any:
    """Start a checkout session from the caller's cart."""
    try:
        logger.info(
            "api_start_checkout_request",
            user_id=user_id,
            coupon_code=request.coupon_code,
            shipping_cost_cents=request.shipping_cost_cents,
        )
        session = await checkout_service.start_checkout(
            user_id=user_id,
            shipping_address=request.shipping_address,
            shipping_cost_cents=request.shipping_cost_cents,
            shipping_service_code=request.shipping_service_code,
            shipping_service_name=request.shipping_service_name,
            coupon_code=request.coupon_code,
        )
        return session

    except CheckoutError as e:
        logger.warning("api_start_checkout_rejected", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@checkout_router.get(
    "/sessions/{session_id}",
    response_model=CheckoutSessionResponse,
    summary="Get checkout session",
    description="Retrieve a checkout session owned by the caller",
)
async def get_checkout_session(
    session_id: uuid.UUID,
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Any:
    """Get a checkout session by ID."""
    try:
        return await checkout_service.get_session(session_id, user_id)

    except CheckoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except CheckoutAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


@checkout_router.post(
    "/sessions/{session_id}/payment-link",
    response_model=CheckoutSessionResponse,
    summary="Record payment link",
    description="Record the hosted payment link created for a pending session",
)
async def record_payment_link(
    session_id: uuid.UUID,
    request: RecordPaymentLinkRequest,
    user_id: str = Depends(get_user_id),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> Any:
    """Record the gateway references of a checkout session."""
    try:
        return await checkout_service.record_payment_link(
            session_id=session_id,
            user_id=user_id,
            checkout_link_id=request.checkout_link_id,
            external_order_id=request.external_order_id,
            checkout_url=request.checkout_url,
        )

    except CheckoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except CheckoutAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    except CheckoutStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@checkout_router.post(
    "/sessions/{session_id}/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify checkout payment",
    description="Reconcile a checkout session with the gateway and create its order once",
)
async def verify_checkout_session(
    session_id: uuid.UUID,
    request: VerifyPaymentRequest,
    user_id: str = Depends(get_user_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> Dict[str, Any]:
    """
    Verify the payment of a checkout session.

    Safe to call repeatedly: a settled session returns its stored outcome.
    """
    try:
        logger.info(
            "api_verify_session_request",
            session_id=str(session_id),
            external_payment_id=request.external_payment_id,
            external_order_id=request.external_order_id,
        )
        result = await engine.verify_session(
            session_id,
            user_id,
            VerificationRequest(
                external_payment_id=request.external_payment_id,
                external_order_id=request.external_order_id,
                client_outcome=request.client_outcome,
            ),
        )
        return _verification_response(result)

    except CheckoutNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except CheckoutAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


@order_router.post(
    "/{order_id}/verify-payment",
    response_model=VerifyPaymentResponse,
    summary="Verify order payment",
    description="Settle the pending gateway payment of an order",
)
async def verify_order_payment(
    order_id: uuid.UUID,
    request: VerifyPaymentRequest,
    user_id: str = Depends(get_user_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> Dict[str, Any]:
    """Verify the payment of an order created with a pending gateway payment."""
    try:
        logger.info(
            "api_verify_order_request",
            order_id=str(order_id),
            external_payment_id=request.external_payment_id,
        )
        result = await engine.verify_order(
            order_id,
            user_id,
            VerificationRequest(
                external_payment_id=request.external_payment_id,
                external_order_id=request.external_order_id,
                client_outcome=request.client_outcome,
            ),
        )
        return _verification_response(result)

    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    except OrderAccessDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    except UnsupportedPaymentMethodError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@admin_router.post(
    "/cleanup",
    response_model=CleanupResponse,
    summary="Run session cleanup",
    description="Manually trigger one checkout session cleanup pass",
)
async def run_cleanup(
    cleaner: SessionCleaner = Depends(get_session_cleaner),
) -> Dict[str, Any]:
    """Run one cleanup pass."""
    logger.info("api_cleanup_started")
    report = await cleaner.run()
    return report.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
