# D:\3xDigital\settlement\services\withdrawal_service.py
"""
withdrawal_service.py

Módulo responsável pelas solicitações de saque dos produtores.

Funcionalidades principais:
    - Criação de solicitação de saque com débito imediato do saldo disponível
    - Processamento da solicitação pelo administrador (aprovar, rejeitar, pagar)
    - Listagem paginada das solicitações

Regras de Negócio:
    - O valor do saque mais a taxa precisa caber no saldo disponível
    - Débito e criação da solicitação acontecem na mesma transação
    - Apenas solicitações pendentes podem ser processadas
    - Rejeitar devolve valor + taxa ao saldo disponível, uma única vez
    - Solicitações nunca são apagadas

Dependências:
    - SQLAlchemy para persistência
    - settlement.services.balance_ledger para débito e crédito
    - settlement.services.fee_settings_service para a taxa de saque
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE
from settlement.models.finance_models import WithdrawalRequest, WITHDRAWAL_STATUSES
from settlement.services import balance_ledger
from settlement.services.errors import ConflictError, InvalidRequestError, NotFoundError
from settlement.services.fee_settings_service import resolve_fee_settings

logger = logging.getLogger(__name__)

WITHDRAWAL_DECISIONS = ('approved', 'rejected', 'paid')


async def request_withdrawal(
    session: AsyncSession,
    producer_id: int,
    amount_cents: int
) -> WithdrawalRequest:
    """
    Cria uma solicitação de saque e debita valor + taxa do saldo disponível.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor
        amount_cents (int): Valor solicitado em centavos

    Returns:
        WithdrawalRequest: Solicitação criada com status 'pending'

    Raises:
        InvalidRequestError: Valor não positivo
        ConfigurationError: Configuração de taxas ausente ou inválida
        InsufficientFundsError: Saldo disponível menor que valor + taxa
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise InvalidRequestError("Withdrawal amount must be a positive integer number of cents")

    settings = await resolve_fee_settings(session, producer_id)
    fee_cents = settings.withdrawal_fee_cents

    try:
        entry = await balance_ledger.debit(
            session, producer_id, amount_cents, fee_cents,
            reference_type='withdrawal',
            description=f"Withdrawal request ({amount_cents} + fee {fee_cents})"
        )

        withdrawal = WithdrawalRequest(
            producer_id=producer_id,
            amount_cents=amount_cents,
            fee_cents=fee_cents,
            status='pending',
            requested_at=TIMEZONE()
        )
        session.add(withdrawal)
        await session.flush()
        if entry is not None:
            entry.reference_id = withdrawal.id

        await session.commit()
    except Exception:
        # Desfaz o débito junto com a solicitação
        await session.rollback()
        raise

    await session.refresh(withdrawal)
    logger.info(
        f"[WITHDRAWAL] Solicitação {withdrawal.id} do produtor {producer_id}: "
        f"valor={amount_cents} taxa={fee_cents} debitados do saldo disponível"
    )
    return withdrawal


async def process_withdrawal(
    session: AsyncSession,
    request_id: int,
    decision: str,
    admin_notes: Optional[str] = None
) -> WithdrawalRequest:
    """
    Processa uma solicitação de saque pendente.

    Args:
        session (AsyncSession): Sessão do banco de dados
        request_id (int): ID da solicitação
        decision (str): 'approved', 'rejected' ou 'paid'
        admin_notes (Optional[str]): Notas do administrador

    Returns:
        WithdrawalRequest: Solicitação atualizada

    Raises:
        InvalidRequestError: Decisão inválida
        NotFoundError: Solicitação inexistente
        ConflictError: Solicitação já processada
    """
    if decision not in WITHDRAWAL_DECISIONS:
        raise InvalidRequestError(
            f"Invalid decision. Use one of the following: {', '.join(WITHDRAWAL_DECISIONS)}"
        )

    try:
        result = await session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == request_id, WithdrawalRequest.status == 'pending')
            .values(status=decision, processed_at=TIMEZONE(), admin_notes=admin_notes)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await session.rollback()
            existing = await session.get(WithdrawalRequest, request_id, populate_existing=True)
            if not existing:
                raise NotFoundError("Withdrawal request not found")
            raise ConflictError(f"Request already {existing.status}")

        withdrawal = await session.get(WithdrawalRequest, request_id, populate_existing=True)
        if decision == 'rejected':
            await balance_ledger.credit(
                session, withdrawal.producer_id, withdrawal.total_cents,
                entry_type='withdrawal_refund', reference_type='withdrawal', reference_id=withdrawal.id,
                description=f"Withdrawal #{withdrawal.id} rejected"
            )

        await session.commit()
    except Exception:
        # Inclui falhas do crédito de devolução: o status volta a pending
        await session.rollback()
        raise

    logger.info(f"[WITHDRAWAL] Solicitação {request_id} marcada como {decision}")
    if decision == 'rejected':
        logger.info(
            f"[WITHDRAWAL] {withdrawal.total_cents} centavos devolvidos ao produtor {withdrawal.producer_id}"
        )
    return withdrawal


async def get_withdrawal_requests(
    session: AsyncSession,
    producer_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[WithdrawalRequest], int]:
    """
    Obtém solicitações de saque com opções de filtragem.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (Optional[int]): Filtrar por produtor
        status (Optional[str]): Filtrar por status
        page (int): Página de resultados
        page_size (int): Tamanho da página

    Returns:
        Tuple[List[WithdrawalRequest], int]:
            - Lista de solicitações
            - Total de solicitações encontradas
    """
    if status and status not in WITHDRAWAL_STATUSES:
        raise InvalidRequestError(f"Invalid status: {status}")

    query = select(WithdrawalRequest)

    if producer_id:
        query = query.where(WithdrawalRequest.producer_id == producer_id)

    if status:
        query = query.where(WithdrawalRequest.status == status)

    # Conta o total
    count_query = select(func.count()).select_from(query.subquery())
    result = await session.execute(count_query)
    total_count = result.scalar_one()

    query = query.order_by(desc(WithdrawalRequest.requested_at), desc(WithdrawalRequest.id))
    query = query.offset((page - 1) * page_size).limit(page_size)

    result = await session.execute(query)
    requests = result.scalars().all()

    return requests, total_count


def withdrawal_to_dict(withdrawal: WithdrawalRequest) -> dict:
    return {
        "id": withdrawal.id,
        "producer_id": withdrawal.producer_id,
        "amount_cents": withdrawal.amount_cents,
        "fee_cents": withdrawal.fee_cents,
        "total_cents": withdrawal.total_cents,
        "status": withdrawal.status,
        "requested_at": withdrawal.requested_at.isoformat() if withdrawal.requested_at else None,
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
        "admin_notes": withdrawal.admin_notes,
    }
