# D:\3xDigital\settlement\services\webhook_service.py
"""
webhook_service.py

Módulo que recebe os webhooks dos gateways de pagamento e encaminha cada evento
normalizado para o núcleo de liquidação.

Funcionalidades principais:
    - Validação do token do webhook com a configuração do gateway
    - Tradução do corpo do webhook para um GatewayEvent
    - Localização da venda pela referência da cobrança ou da assinatura
    - Encaminhamento para a liquidação ou para a atualização de status

Regras de Negócio:
    - Apenas confirmações de pagamento (ou ativação de assinatura) liquidam vendas
    - Eventos desconhecidos são aceitos e ignorados
    - Venda não encontrada é um erro (o gateway deve tentar novamente)
    - Eventos de cobranças recorrentes posteriores (referência da cobrança sem venda
      própria, assinatura já liquidada) são ignorados e não alteram a venda original

Dependências:
    - settlement.services.payment para os gateways
    - settlement.services.settlement_service para liquidação e status
"""

import logging
from typing import Dict, Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.finance_models import Sale, CREDITED_STATUSES
from settlement.services.errors import NotFoundError
from settlement.services.payment.gateway_factory import PaymentGatewayFactory
from settlement.services.payment.gateway_interface import GatewayEvent
from settlement.services.settlement_service import (
    SettlementResult, on_payment_confirmed, mark_sale_status
)

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    'payment_failed': 'failed',
    'payment_refunded': 'refunded',
    'payment_cancelled': 'cancelled',
    'payment_expired': 'expired',
}


async def find_sale_for_event(session: AsyncSession, event: GatewayEvent) -> Optional[Sale]:
    """
    Localiza a venda referenciada pelo evento: primeiro pela cobrança, depois
    pela assinatura (a venda mais antiga da assinatura).
    """
    if event.reference:
        result = await session.execute(
            select(Sale).where(Sale.gateway_transaction_id == event.reference)
        )
        sale = result.scalar_one_or_none()
        if sale:
            return sale

    if event.subscription_reference:
        result = await session.execute(
            select(Sale)
            .where(Sale.gateway_subscription_id == event.subscription_reference)
            .order_by(Sale.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    return None


def _confirmation_status(result: SettlementResult) -> str:
    if not result.already_processed:
        return "processed"
    if result.status in CREDITED_STATUSES and result.release_date is not None:
        return "already_processed"
    # Venda reembolsada, expirada ou cancelada antes do pagamento
    return "ignored"


def _is_later_recurring_charge(sale: Sale, event: GatewayEvent) -> bool:
    # Encontrada pela assinatura, não pela cobrança, e a venda original já foi paga
    return (
        bool(event.reference)
        and sale.gateway_transaction_id != event.reference
        and sale.paid_at is not None
    )


async def process_gateway_event(
    session: AsyncSession,
    gateway_name: str,
    event: GatewayEvent,
    today=None
) -> Dict[str, Any]:
    """
    Aplica um evento normalizado à venda correspondente.

    Args:
        session (AsyncSession): Sessão do banco de dados
        gateway_name (str): Gateway de origem
        event (GatewayEvent): Evento normalizado
        today (Optional[date]): Data de referência repassada à liquidação

    Returns:
        Dict[str, Any]: Resumo do processamento

    Raises:
        NotFoundError: Se nenhuma venda corresponder ao evento
    """
    if event.kind == 'ignored':
        logger.info(f"[WEBHOOK] Evento '{event.event_name}' do gateway {gateway_name} não requer ação")
        return {"status": "ignored", "event": event.event_name}

    sale = await find_sale_for_event(session, event)
    if sale and _is_later_recurring_charge(sale, event):
        logger.info(
            f"[WEBHOOK] Evento '{event.event_name}' da cobrança {event.reference} pertence a uma "
            f"renovação da assinatura {event.subscription_reference}; venda {sale.id} não alterada"
        )
        return {"status": "ignored", "event": event.event_name}

    if not sale:
        logger.warning(
            f"[WEBHOOK] Venda não encontrada para o evento '{event.event_name}' "
            f"(referência={event.reference}, assinatura={event.subscription_reference})"
        )
        raise NotFoundError("Sale not found for gateway reference")

    logger.info(f"[WEBHOOK] Evento '{event.event_name}' do gateway {gateway_name} para a venda {sale.id}")

    if event.kind in ('payment_confirmed', 'subscription_activated'):
        result = await on_payment_confirmed(
            session,
            sale.id,
            paid_at_date=event.paid_at_date,
            amount_cents=event.amount_cents,
            gateway_status=event.gateway_status,
            today=today
        )
        return {
            "status": _confirmation_status(result),
            "event": event.event_name,
            "sale": result.to_dict(),
        }

    updated = await mark_sale_status(session, sale.id, _STATUS_BY_KIND[event.kind], event.gateway_status)
    return {
        "status": "processed",
        "event": event.event_name,
        "sale": {"sale_id": updated.id, "status": updated.status},
    }


async def handle_webhook(
    session: AsyncSession,
    gateway_name: Optional[str],
    payload: Dict[str, Any],
    headers: Mapping[str, str]
) -> Dict[str, Any]:
    """
    Valida, traduz e processa um webhook.

    Args:
        session (AsyncSession): Sessão do banco de dados
        gateway_name (Optional[str]): Gateway da rota; None usa o gateway ativo
        payload (Dict[str, Any]): Corpo decodificado
        headers (Mapping[str, str]): Cabeçalhos da requisição

    Returns:
        Dict[str, Any]: Resumo do processamento
    """
    if gateway_name:
        gateway = PaymentGatewayFactory.get_gateway(gateway_name)
    else:
        gateway = await PaymentGatewayFactory.get_active_gateway(session)

    config = await gateway.get_gateway_config(session)
    gateway.verify_webhook(headers, config)

    event = gateway.parse_webhook(payload)
    return await process_gateway_event(session, gateway.name, event)
