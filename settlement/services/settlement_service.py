# D:\3xDigital\settlement\services\settlement_service.py
"""
settlement_service.py

Módulo responsável pela liquidação de vendas: transforma a confirmação de pagamento
do gateway em valores financeiros gravados na venda e no saldo do produtor.

Funcionalidades principais:
    - Criação da venda pendente no checkout
    - Liquidação idempotente de vendas confirmadas (taxa, parte, reserva, liberação)
    - Atualização de status por eventos de falha, reembolso, cancelamento e expiração
    - Reconciliação de vendas pagas cujo crédito no saldo não foi aplicado

Regras de Negócio:
    - Uma segunda confirmação da mesma venda não altera nada
    - A venda é marcada como paga em um único UPDATE condicional, com todos os
      campos financeiros juntos
    - O crédito no saldo roda em uma segunda transação; se falhar, a venda continua
      paga e fica marcada para reconciliação (ledger_applied = False)
    - A parte do produtor menos a reserva vai para o saldo disponível ou pendente,
      conforme a data de liberação; a reserva vai para o saldo reservado
    - Uma venda paga nunca volta para "failed"
    - Confirmações de vendas reembolsadas, canceladas ou expiradas são ignoradas

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.fee_calculator e fee_settings_service para os cálculos
    - settlement.services.balance_ledger para o crédito no saldo
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, time
from typing import Optional, Dict, Any, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE, TIMEZONE_NAME, as_local
from settlement.models.database import Product
from settlement.models.finance_models import Sale, PAYMENT_METHODS, CREDITED_STATUSES
from settlement.services import balance_ledger
from settlement.services.errors import (
    ConfigurationError, ConflictError, InvalidRequestError, LedgerReconciliationError, NotFoundError
)
from settlement.services.fee_calculator import (
    compute_platform_fee, compute_release_date, compute_security_reserve
)
from settlement.services.fee_settings_service import resolve_fee_settings

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = ('pending_payment', 'failed')

_STATUS_TRANSITIONS = {
    'failed': ('pending_payment',),
    'expired': ('pending_payment', 'failed'),
    'cancelled': ('pending_payment', 'failed', 'active'),
    'refunded': ('paid', 'active'),
}


@dataclass
class SettlementResult:
    """
    Resultado de uma liquidação.

    Attributes:
        sale_id (int): Venda liquidada.
        status (str): Status final da venda.
        already_processed (bool): True quando a chamada não liquidou nada de novo.
        ledger_applied (bool): Indica se o crédito no saldo está aplicado.
    """
    sale_id: int
    status: str
    already_processed: bool
    ledger_applied: bool
    platform_fee_cents: Optional[int] = None
    producer_share_cents: Optional[int] = None
    security_reserve_cents: Optional[int] = None
    release_date: Optional[date] = None
    ledger_bucket: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["release_date"] = self.release_date.isoformat() if self.release_date else None
        return data


def _result(sale: Sale, already_processed: bool) -> SettlementResult:
    return SettlementResult(
        sale_id=sale.id,
        status=sale.status,
        already_processed=already_processed,
        ledger_applied=bool(sale.ledger_applied),
        platform_fee_cents=sale.platform_fee_cents,
        producer_share_cents=sale.producer_share_cents,
        security_reserve_cents=sale.security_reserve_cents,
        release_date=sale.release_date,
        ledger_bucket=sale.ledger_bucket
    )


def _normalize_paid_at(value: Union[date, datetime, None]) -> datetime:
    if value is None:
        return TIMEZONE()
    if isinstance(value, datetime):
        return as_local(value)
    return datetime.combine(value, time.min, tzinfo=ZoneInfo(TIMEZONE_NAME))


async def _load_sale(session: AsyncSession, sale_id: int) -> Sale:
    sale = await session.get(Sale, sale_id, populate_existing=True)
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


async def create_sale(
    session: AsyncSession,
    product_id: int,
    payment_method: str,
    installments: int = 1,
    buyer_email: Optional[str] = None,
    amount_cents: Optional[int] = None,
    gateway_name: Optional[str] = None,
    gateway_transaction_id: Optional[str] = None,
    gateway_subscription_id: Optional[str] = None
) -> Sale:
    """
    Cria a venda pendente no momento do checkout.

    Args:
        session (AsyncSession): Sessão do banco de dados
        product_id (int): Produto vendido
        payment_method (str): 'card', 'pix' ou 'bank_slip'
        installments (int): Parcelas (apenas cartão)
        amount_cents (Optional[int]): Valor bruto; o padrão é o preço do produto
        gateway_transaction_id (Optional[str]): Referência da cobrança no gateway

    Returns:
        Sale: Venda criada com status 'pending_payment'

    Raises:
        NotFoundError: Se o produto não existir
        InvalidRequestError: Se o método, as parcelas ou o valor forem inválidos
        ConflictError: Se a referência do gateway já estiver em uso
    """
    if payment_method not in PAYMENT_METHODS:
        raise InvalidRequestError(f"Unsupported payment method: {payment_method}")
    if not isinstance(installments, int) or installments < 1:
        raise InvalidRequestError("Installments must be at least 1")
    if payment_method != 'card' and installments != 1:
        raise InvalidRequestError("Installments are only allowed for card payments")

    product = await session.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")

    gross = product.price_cents if amount_cents is None else amount_cents
    if not isinstance(gross, int) or gross <= 0:
        raise InvalidRequestError("Amount must be a positive integer number of cents")

    sale = Sale(
        product_id=product.id,
        producer_id=product.producer_id,
        buyer_email=buyer_email,
        amount_total_cents=gross,
        payment_method=payment_method,
        installments=installments,
        status='pending_payment',
        gateway_name=gateway_name,
        gateway_transaction_id=gateway_transaction_id,
        gateway_subscription_id=gateway_subscription_id,
        ledger_applied=False,
        created_at=TIMEZONE()
    )
    session.add(sale)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError("Gateway transaction reference already registered")
    await session.refresh(sale)
    return sale


async def on_payment_confirmed(
    session: AsyncSession,
    sale_id: int,
    paid_at_date: Union[date, datetime, None] = None,
    amount_cents: Optional[int] = None,
    gateway_status: Optional[str] = None,
    today: Optional[date] = None
) -> SettlementResult:
    """
    Liquida uma venda confirmada pelo gateway.

    Args:
        session (AsyncSession): Sessão do banco de dados
        sale_id (int): ID da venda
        paid_at_date (date | datetime | None): Data do pagamento informada pelo gateway;
            o padrão é o momento atual
        amount_cents (Optional[int]): Valor informado pelo gateway, validado contra o bruto
        gateway_status (Optional[str]): Status bruto do gateway, apenas registrado
        today (Optional[date]): Data de referência para escolher o saldo de destino

    Returns:
        SettlementResult: Resultado da liquidação (already_processed=True para repetições)

    Raises:
        NotFoundError: Venda inexistente
        InvalidRequestError: Valor pago menor que o bruto da venda
        ConfigurationError: Configurações de taxas ausentes ou taxa maior que o bruto
        LedgerReconciliationError: Venda paga, mas o crédito no saldo falhou
    """
    sale = await _load_sale(session, sale_id)

    if sale.status in CREDITED_STATUSES and sale.paid_at is not None:
        if sale.ledger_applied:
            logger.info(f"[IDEMPOTENCY_CHECK] Venda {sale_id} já liquidada, nenhuma alteração")
            return _result(sale, already_processed=True)
        logger.warning(f"[RECONCILIATION] Venda {sale_id} paga sem crédito no saldo, reaplicando")
        await _apply_ledger(session, sale)
        sale = await _load_sale(session, sale_id)
        return _result(sale, already_processed=True)

    if sale.status not in SETTLEABLE_STATUSES:
        # Reembolsada, cancelada ou expirada: a confirmação tardia não muda nada
        logger.info(
            f"[IDEMPOTENCY_CHECK] Confirmação ignorada para a venda {sale_id}, que está {sale.status}"
        )
        return _result(sale, already_processed=True)

    gross = sale.amount_total_cents
    if amount_cents is not None and amount_cents < gross:
        raise InvalidRequestError(
            "Paid amount is lower than the sale amount",
            {"paid_amount_cents": amount_cents, "sale_amount_cents": gross}
        )

    settings = await resolve_fee_settings(session, sale.producer_id)
    platform_fee = compute_platform_fee(sale.payment_method, sale.installments, gross, settings)
    if platform_fee > gross:
        raise ConfigurationError("Configured fees exceed the sale amount")
    producer_share = gross - platform_fee
    reserve = min(compute_security_reserve(gross, settings), producer_share)

    paid_at = _normalize_paid_at(paid_at_date)
    release_date = compute_release_date(sale.payment_method, paid_at, settings)
    today = today or TIMEZONE().date()
    bucket = 'available' if release_date <= today else 'pending'
    new_status = 'active' if sale.is_subscription else 'paid'

    values = {
        Sale.status: new_status,
        Sale.paid_at: paid_at,
        Sale.platform_fee_cents: platform_fee,
        Sale.producer_share_cents: producer_share,
        Sale.security_reserve_cents: reserve,
        Sale.release_date: release_date,
        Sale.payout_status: 'pending',
        Sale.ledger_bucket: bucket,
        Sale.ledger_applied: False,
        Sale.updated_at: TIMEZONE(),
    }
    if gateway_status:
        values[Sale.gateway_status] = gateway_status

    try:
        result = await session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.status.in_(SETTLEABLE_STATUSES))
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            logger.info(f"[IDEMPOTENCY_CHECK] Venda {sale_id} liquidada por outra requisição")
            sale = await _load_sale(session, sale_id)
            return _result(sale, already_processed=True)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"[SETTLEMENT] Venda {sale_id} marcada como {new_status}: bruto={gross} taxa={platform_fee} "
        f"parte={producer_share} reserva={reserve} liberação={release_date.isoformat()} saldo={bucket}"
    )

    sale = await _load_sale(session, sale_id)
    await _apply_ledger(session, sale)
    sale = await _load_sale(session, sale_id)
    return _result(sale, already_processed=False)


async def _apply_ledger(session: AsyncSession, sale: Sale) -> bool:
    """
    Credita a parte do produtor e a reserva no saldo, em transação própria.

    O flag ledger_applied é virado primeiro, de forma condicional, para que
    duas tentativas concorrentes não creditem o mesmo valor duas vezes.

    Returns:
        bool: True se o crédito foi aplicado por esta chamada.

    Raises:
        LedgerReconciliationError: Se qualquer passo falhar (tudo é desfeito).
    """
    sale_id = sale.id
    producer_id = sale.producer_id
    reserve = sale.security_reserve_cents or 0
    share_part = sale.producer_share_cents - reserve
    bucket = sale.ledger_bucket or 'pending'

    try:
        result = await session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.ledger_applied.is_(False))
            .values({Sale.ledger_applied: True})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            logger.info(f"[IDEMPOTENCY_CHECK] Crédito da venda {sale_id} já aplicado")
            return False

        await balance_ledger.increment(
            session, producer_id, bucket, share_part,
            entry_type='sale_credit', reference_type='sale', reference_id=sale_id,
            description=f"Sale #{sale_id} producer share"
        )
        await balance_ledger.increment(
            session, producer_id, 'reserved', reserve,
            entry_type='reserve_hold', reference_type='sale', reference_id=sale_id,
            description=f"Sale #{sale_id} security reserve"
        )
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(
            f"[RECONCILIATION] Venda {sale_id} paga, mas o crédito de {share_part + reserve} centavos "
            f"para o produtor {producer_id} falhou: {e}"
        )
        raise LedgerReconciliationError(
            "Sale was marked as paid but the balance update failed; reconciliation required",
            {"sale_id": sale_id}
        ) from e

    logger.info(
        f"[SETTLEMENT] Produtor {producer_id}: +{share_part} em {bucket}, +{reserve} em reserved "
        f"(venda {sale_id})"
    )
    return True


async def mark_sale_status(
    session: AsyncSession,
    sale_id: int,
    status: str,
    gateway_status: Optional[str] = None
) -> Sale:
    """
    Aplica um evento de falha, expiração, cancelamento ou reembolso à venda.

    Nenhuma destas transições movimenta o saldo. Eventos de falha ou expiração
    que chegam depois do pagamento são ignorados.

    Raises:
        InvalidRequestError: Status de destino não suportado
        NotFoundError: Venda inexistente
        ConflictError: Transição não permitida a partir do status atual
    """
    if status not in _STATUS_TRANSITIONS:
        raise InvalidRequestError(f"Unsupported sale status: {status}")

    sale = await _load_sale(session, sale_id)
    if sale.status == status:
        return sale

    if sale.paid_at is not None and status in ('failed', 'expired'):
        logger.warning(
            f"[WEBHOOK] Evento '{status}' ignorado para a venda {sale_id}, que já está {sale.status}"
        )
        return sale

    allowed = _STATUS_TRANSITIONS[status]
    if sale.status not in allowed:
        raise ConflictError(f"Sale cannot move from '{sale.status}' to '{status}'")

    values = {Sale.status: status, Sale.updated_at: TIMEZONE()}
    if gateway_status:
        values[Sale.gateway_status] = gateway_status

    result = await session.execute(
        update(Sale)
        .where(Sale.id == sale_id, Sale.status == sale.status)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Sale status changed concurrently")
    await session.commit()

    if status == 'refunded' and sale.ledger_applied:
        logger.warning(
            f"[SETTLEMENT] Venda {sale_id} reembolsada após crédito de "
            f"{sale.producer_share_cents} centavos ao produtor {sale.producer_id}; ajuste manual necessário"
        )
    else:
        logger.info(f"[SETTLEMENT] Venda {sale_id} atualizada para {status}")

    return await _load_sale(session, sale_id)


async def reconcile_unapplied_sales(session: AsyncSession) -> Dict[str, Any]:
    """
    Reaplica o crédito no saldo de todas as vendas pagas em que ele não foi aplicado.

    Returns:
        Dict[str, Any]: processed, reconciled (IDs) e failures ({sale_id, error})
    """
    result = await session.execute(
        select(Sale.id)
        .where(
            Sale.status.in_(CREDITED_STATUSES),
            Sale.paid_at.is_not(None),
            Sale.ledger_applied.is_(False)
        )
        .order_by(Sale.id)
    )
    sale_ids = list(result.scalars().all())

    reconciled = []
    failures = []
    for sale_id in sale_ids:
        sale = await _load_sale(session, sale_id)
        try:
            if await _apply_ledger(session, sale):
                reconciled.append(sale_id)
        except LedgerReconciliationError as e:
            failures.append({"sale_id": sale_id, "error": e.message})

    if sale_ids:
        logger.info(
            f"[RECONCILIATION] {len(reconciled)} de {len(sale_ids)} vendas reconciliadas, "
            f"{len(failures)} falhas"
        )
    return {"processed": len(sale_ids), "reconciled": reconciled, "failures": failures}
