"""
Matching redirect id policy.

When the gateway redirects the shopper back with a payment id and an order
id that are the same opaque value, that redirect is the strongest evidence
of payment available while direct lookups are still lagging. This policy
decides whether such a redirect may settle a session on its own. It is
toggled from settings and every application is audited by the caller.
"""
import re
from dataclasses import dataclass
from typing import Optional

from checkout_reconciliation.config import Settings
from checkout_reconciliation.database.models import CheckoutSession
from checkout_reconciliation.integrations.gateway import GatewayPayment


@dataclass(frozen=True)
class TrustDecision:
    """Outcome of evaluating the policy, with the reason for the audit trail."""

    trusted: bool
    reason: str


class MatchingRedirectIdPolicy:
    """Trust identical, well-formed payment and order ids from the redirect."""

    def __init__(self, enabled: bool, id_pattern: str):
        self.enabled = enabled
        self.id_pattern = re.compile(id_pattern)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MatchingRedirectIdPolicy":
        return cls(
            enabled=settings.trusted_redirect_enabled,
            id_pattern=settings.trusted_redirect_id_pattern,
        )

    def evaluate(
        self,
        session: CheckoutSession,
        external_payment_id: Optional[str],
        external_order_id: Optional[str],
    ) -> TrustDecision:
        if not self.enabled:
            return TrustDecision(False, "policy_disabled")
        if not external_payment_id or not external_order_id:
            return TrustDecision(False, "missing_redirect_ids")
        if external_payment_id != external_order_id:
            return TrustDecision(False, "redirect_ids_differ")
        if not self.id_pattern.fullmatch(external_payment_id):
            return TrustDecision(False, "implausible_id_shape")
        if session.is_terminal:
            return TrustDecision(False, "session_not_pending")
        if not session.items:
            return TrustDecision(False, "empty_session")
        if session.external_order_id and session.external_order_id != external_order_id:
            return TrustDecision(False, "order_id_mismatch")
        return TrustDecision(True, "matching_redirect_ids")

    @staticmethod
    def marker(external_payment_id: str) -> GatewayPayment:
        """Completed-payment marker standing in for the unresolved payment."""
        return GatewayPayment(
            id=external_payment_id,
            status="COMPLETED",
            completed=True,
            order_id=external_payment_id,
            synthesized=True,
        )
