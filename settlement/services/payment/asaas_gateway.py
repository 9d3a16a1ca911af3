# D:\3xDigital\settlement\services\payment\asaas_gateway.py

"""
asaas_gateway.py

Implementação do gateway Asaas. Traduz os webhooks de cobrança do Asaas
para eventos normalizados.

Formato esperado:
    {"event": "PAYMENT_RECEIVED", "payment": {"id": "pay_123", "status": "RECEIVED",
     "value": 100.0, "paymentDate": "2024-05-10", "subscription": "sub_1"}}

O token do webhook chega no cabeçalho 'asaas-access-token'.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Optional

from settlement.services.errors import InvalidRequestError
from settlement.services.fee_calculator import round_half_up
from .gateway_interface import PaymentGatewayInterface, GatewayEvent

_EVENT_KINDS = {
    'PAYMENT_RECEIVED': 'payment_confirmed',
    'PAYMENT_CONFIRMED': 'payment_confirmed',
    'PAYMENT_OVERDUE': 'payment_expired',
    'PAYMENT_REFUNDED': 'payment_refunded',
    'PAYMENT_DELETED': 'payment_cancelled',
    'PAYMENT_REPROVED_BY_RISK_ANALYSIS': 'payment_failed',
    'PAYMENT_CREDIT_CARD_CAPTURE_REFUSED': 'payment_failed',
}


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidRequestError(f"Invalid payment date: {value}")


def _to_cents(value: Any) -> Optional[int]:
    # Asaas envia valores em reais
    if value is None:
        return None
    try:
        return round_half_up(Decimal(str(value)) * 100)
    except InvalidOperation:
        raise InvalidRequestError(f"Invalid payment value: {value}")


class AsaasGateway(PaymentGatewayInterface):
    """
    Gateway Asaas.
    """

    name = "asaas"
    token_header = "asaas-access-token"

    def parse_webhook(self, payload: Dict[str, Any]) -> GatewayEvent:
        event_name = payload.get("event")
        payment = payload.get("payment")
        if not event_name or not isinstance(payment, dict):
            raise InvalidRequestError("Invalid Asaas webhook payload")

        kind = _EVENT_KINDS.get(event_name, 'ignored')
        if kind == 'ignored':
            return GatewayEvent(kind=kind, event_name=event_name, reference=payment.get("id"))

        if not payment.get("id"):
            raise InvalidRequestError("Missing payment id in Asaas webhook")

        paid_at_date = None
        if kind == 'payment_confirmed':
            paid_at_date = _parse_date(
                payment.get("paymentDate") or payment.get("confirmedDate") or payment.get("clientPaymentDate")
            )

        return GatewayEvent(
            kind=kind,
            event_name=event_name,
            reference=payment["id"],
            subscription_reference=payment.get("subscription"),
            paid_at_date=paid_at_date,
            amount_cents=_to_cents(payment.get("value")),
            gateway_status=payment.get("status")
        )
