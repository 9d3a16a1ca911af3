# D:\3xDigital\settlement\services\payment\iugu_gateway.py

"""
iugu_gateway.py

Implementação do gateway Iugu. A Iugu envia webhooks como formulário
(application/x-www-form-urlencoded, com campos data[...]) ou como JSON;
os dois formatos são aceitos.

Eventos tratados:
    - invoice.status_changed: o status da fatura define o evento
    - invoice.refund: reembolso da fatura
    - subscription.activated / canceled / suspended / expired

O token do webhook chega no cabeçalho 'Authorization'.
"""

from typing import Dict, Any

from settlement.services.errors import InvalidRequestError
from .gateway_interface import PaymentGatewayInterface, GatewayEvent

_INVOICE_STATUS_KINDS = {
    'paid': 'payment_confirmed',
    'canceled': 'payment_cancelled',
    'refunded': 'payment_refunded',
    'expired': 'payment_expired',
    'payment_failed': 'payment_failed',
}

_SUBSCRIPTION_EVENT_KINDS = {
    'subscription.activated': 'subscription_activated',
    'subscription.canceled': 'payment_cancelled',
    'subscription.suspended': 'payment_expired',
    'subscription.expired': 'payment_expired',
}


def normalize_form_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reconstrói o objeto 'data' a partir de campos de formulário 'data[chave]'.
    """
    if isinstance(payload.get("data"), dict):
        return payload

    data = {}
    for key, value in payload.items():
        if key.startswith("data[") and key.endswith("]"):
            data[key[5:-1]] = value
    return {"event": payload.get("event"), "data": data}


class IuguGateway(PaymentGatewayInterface):
    """
    Gateway Iugu.
    """

    name = "iugu"
    token_header = "Authorization"

    def parse_webhook(self, payload: Dict[str, Any]) -> GatewayEvent:
        payload = normalize_form_payload(payload)
        event_name = payload.get("event")
        data = payload.get("data") or {}
        if not event_name:
            raise InvalidRequestError("Missing event parameter")

        if event_name.startswith("subscription."):
            kind = _SUBSCRIPTION_EVENT_KINDS.get(event_name, 'ignored')
            if kind != 'ignored' and not data.get("id"):
                raise InvalidRequestError("Missing subscription ID")
            return GatewayEvent(
                kind=kind,
                event_name=event_name,
                subscription_reference=data.get("id"),
                gateway_status=event_name.split(".", 1)[1]
            )

        if event_name == "invoice.refund":
            kind = 'payment_refunded'
        elif event_name == "invoice.status_changed":
            kind = _INVOICE_STATUS_KINDS.get(data.get("status"), 'ignored')
        else:
            kind = 'ignored'

        if kind != 'ignored' and not data.get("id"):
            raise InvalidRequestError("Missing invoice ID")

        # A Iugu não envia data de pagamento neste webhook; vale a data de recebimento
        return GatewayEvent(
            kind=kind,
            event_name=event_name,
            reference=data.get("id"),
            subscription_reference=data.get("subscription_id") or None,
            gateway_status=data.get("status")
        )
