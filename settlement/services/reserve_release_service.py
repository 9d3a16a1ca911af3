# D:\3xDigital\settlement\services\reserve_release_service.py
"""
reserve_release_service.py

Módulo da varredura periódica de saldos: libera reservas de segurança vencidas e
partes de vendas cuja data de liberação já chegou.

Funcionalidades principais:
    - Liberação das reservas de segurança após o prazo de retenção
    - Liberação das partes pendentes na data de liberação
    - Execução completa da varredura (inclui a reconciliação de vendas pendentes)

Regras de Negócio:
    - Cada venda é processada em transação própria; a falha de uma não interrompe as demais
    - A reserva é zerada na venda e transferida do saldo reservado para o disponível
      na mesma transação; a venda já zerada por outra varredura é ignorada
    - Assinaturas canceladas depois de pagas continuam sendo liberadas
    - Rodar a varredura de novo sobre uma venda já liberada não altera nada

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.balance_ledger para as transferências
"""

import logging
from datetime import datetime, date, timedelta
from typing import Dict, Any, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE, as_local
from settlement.models.finance_models import Sale, LedgerEntry, CREDITED_STATUSES
from settlement.services import balance_ledger
from settlement.services.fee_settings_service import resolve_fee_settings
from settlement.services.settlement_service import reconcile_unapplied_sales

logger = logging.getLogger(__name__)


async def release_security_reserves(session: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Libera as reservas de segurança cujo prazo de retenção terminou.

    Args:
        session (AsyncSession): Sessão do banco de dados
        now (Optional[datetime]): Momento de referência; o padrão é agora

    Returns:
        Dict[str, Any]: processed (vendas avaliadas), releases e failures
    """
    now = as_local(now) if now else TIMEZONE()

    result = await session.execute(
        select(Sale.id, Sale.producer_id, Sale.paid_at, Sale.security_reserve_cents)
        .where(
            Sale.status.in_(CREDITED_STATUSES),
            Sale.paid_at.is_not(None),
            Sale.security_reserve_cents > 0,
            Sale.ledger_applied.is_(True)
        )
        .order_by(Sale.id)
    )
    candidates = result.all()
    await session.rollback()

    releases = []
    failures = []
    for sale_id, producer_id, paid_at, amount in candidates:
        try:
            settings = await resolve_fee_settings(session, producer_id)
            release_at = as_local(paid_at) + timedelta(days=settings.security_reserve_days)
            if now < release_at:
                await session.rollback()
                continue

            # Zerar a reserva na venda primeiro reivindica a liberação para esta transação
            zeroed = await session.execute(
                update(Sale)
                .where(Sale.id == sale_id, Sale.security_reserve_cents == amount)
                .values({Sale.security_reserve_cents: 0, Sale.updated_at: TIMEZONE()})
                .execution_options(synchronize_session=False)
            )
            if zeroed.rowcount != 1:
                await session.rollback()
                logger.info(f"[RESERVE_RELEASE] Reserva da venda {sale_id} já liberada por outra varredura")
                continue

            moved = await balance_ledger.move_reserved_to_available(
                session, producer_id, amount, reference_id=sale_id,
                description=f"Sale #{sale_id} security reserve released"
            )
            if not moved:
                await session.rollback()
                logger.error(
                    f"[RESERVE_RELEASE] Saldo reservado do produtor {producer_id} não cobre "
                    f"{amount} centavos da venda {sale_id}"
                )
                failures.append({"sale_id": sale_id, "error": "Reserved balance does not cover the reserve"})
                continue

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"[RESERVE_RELEASE] Falha ao liberar a reserva da venda {sale_id}: {e}")
            failures.append({"sale_id": sale_id, "error": str(e)})
            continue

        logger.info(
            f"[RESERVE_RELEASE] {amount} centavos liberados para o produtor {producer_id} (venda {sale_id})"
        )
        releases.append({"sale_id": sale_id, "producer_id": producer_id, "amount_cents": amount})

    return {"processed": len(candidates), "releases": releases, "failures": failures}


async def release_matured_shares(session: AsyncSession, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Move para o saldo disponível as partes pendentes cuja data de liberação chegou.

    O valor transferido é o saldo pendente lançado para a venda no extrato, de
    modo que a reserva (liberada à parte) nunca é contada duas vezes.

    Args:
        session (AsyncSession): Sessão do banco de dados
        today (Optional[date]): Data de referência; o padrão é hoje

    Returns:
        Dict[str, Any]: processed, releases e failures
    """
    today = today or TIMEZONE().date()

    result = await session.execute(
        select(Sale.id, Sale.producer_id)
        .where(
            Sale.status.in_(CREDITED_STATUSES),
            Sale.ledger_bucket == 'pending',
            Sale.ledger_applied.is_(True),
            Sale.release_date <= today
        )
        .order_by(Sale.id)
    )
    candidates = result.all()
    await session.rollback()

    releases = []
    failures = []
    for sale_id, producer_id in candidates:
        try:
            flagged = await session.execute(
                update(Sale)
                .where(Sale.id == sale_id, Sale.ledger_bucket == 'pending')
                .values({Sale.ledger_bucket: 'available', Sale.updated_at: TIMEZONE()})
                .execution_options(synchronize_session=False)
            )
            if flagged.rowcount != 1:
                await session.rollback()
                continue

            pending = await session.execute(
                select(func.coalesce(func.sum(LedgerEntry.amount_cents), 0))
                .where(
                    LedgerEntry.reference_type == 'sale',
                    LedgerEntry.reference_id == sale_id,
                    LedgerEntry.bucket == 'pending'
                )
            )
            amount = int(pending.scalar_one())

            moved = await balance_ledger.move_pending_to_available(
                session, producer_id, amount, reference_id=sale_id,
                description=f"Sale #{sale_id} share released"
            )
            if not moved:
                await session.rollback()
                failures.append({"sale_id": sale_id, "error": "Pending balance does not cover the share"})
                continue

            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"[RESERVE_RELEASE] Falha ao liberar a parte da venda {sale_id}: {e}")
            failures.append({"sale_id": sale_id, "error": str(e)})
            continue

        logger.info(f"[RESERVE_RELEASE] Parte de {amount} centavos da venda {sale_id} liberada")
        releases.append({"sale_id": sale_id, "producer_id": producer_id, "amount_cents": amount})

    return {"processed": len(candidates), "releases": releases, "failures": failures}


async def run_sweep(session: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Executa a varredura completa: reconciliação, partes vencidas e reservas vencidas.
    """
    now = as_local(now) if now else TIMEZONE()
    reconciliation = await reconcile_unapplied_sales(session)
    shares = await release_matured_shares(session, today=now.date())
    reserves = await release_security_reserves(session, now=now)
    return {
        "reconciliation": reconciliation,
        "shares": shares,
        "reserves": reserves,
    }
