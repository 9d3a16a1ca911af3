# D:\3xDigital\settlement\services\balance_ledger.py
"""
balance_ledger.py

Módulo responsável pelas mutações do saldo dos produtores. Cada primitiva é um
único UPDATE condicional no banco, nunca uma leitura seguida de escrita em Python,
para que operações concorrentes sobre o mesmo produtor não percam atualizações.

Funcionalidades principais:
    - Criação do registro de saldo
    - Crédito em um dos saldos (disponível, pendente, reservado)
    - Débito condicional do saldo disponível
    - Transferência de reserva e de partes pendentes para o disponível
    - Registro de um lançamento no extrato para cada mutação

Regras de Negócio:
    - Nenhum saldo pode ficar negativo
    - Débito sem saldo suficiente falha sem alterar nada
    - As primitivas não fazem commit: a transação pertence a quem chama

Dependências:
    - SQLAlchemy para os UPDATEs condicionais
    - settlement.models.finance_models para ProducerBalance e LedgerEntry
"""

import logging
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE
from settlement.models.finance_models import ProducerBalance, LedgerEntry, BALANCE_BUCKETS
from settlement.services.errors import InsufficientFundsError, InvalidRequestError, ConflictError

logger = logging.getLogger(__name__)

_BUCKET_COLUMNS = {
    'available': ProducerBalance.available_balance_cents,
    'pending': ProducerBalance.pending_balance_cents,
    'reserved': ProducerBalance.reserved_balance_cents,
}


def _check_amount(amount_cents: int) -> None:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents < 0:
        raise InvalidRequestError("Amount must be a non-negative integer number of cents")


def _record(
    session: AsyncSession,
    producer_id: int,
    entry_type: str,
    bucket: str,
    amount_cents: int,
    reference_type: Optional[str],
    reference_id: Optional[int],
    description: Optional[str]
) -> LedgerEntry:
    entry = LedgerEntry(
        producer_id=producer_id,
        entry_type=entry_type,
        bucket=bucket,
        amount_cents=amount_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description or entry_type.replace('_', ' ').capitalize(),
        created_at=TIMEZONE()
    )
    session.add(entry)
    return entry


async def get_or_create_balance(session: AsyncSession, producer_id: int) -> ProducerBalance:
    """
    Obtém ou cria o registro de saldo de um produtor.

    A criação usa INSERT ... ON CONFLICT DO NOTHING, de modo que dois primeiros
    créditos concorrentes do mesmo produtor não falham na chave única. O commit
    fica com quem chama.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor

    Returns:
        ProducerBalance: Registro de saldo do produtor
    """
    result = await session.execute(
        select(ProducerBalance).where(ProducerBalance.producer_id == producer_id)
    )
    balance = result.scalar_one_or_none()
    if balance:
        return balance

    await session.execute(
        sqlite_insert(ProducerBalance)
        .values(
            producer_id=producer_id,
            available_balance_cents=0,
            pending_balance_cents=0,
            reserved_balance_cents=0,
            updated_at=TIMEZONE()
        )
        .on_conflict_do_nothing(index_elements=[ProducerBalance.producer_id])
    )
    result = await session.execute(
        select(ProducerBalance)
        .where(ProducerBalance.producer_id == producer_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def increment(
    session: AsyncSession,
    producer_id: int,
    bucket: str,
    amount_cents: int,
    entry_type: str = 'sale_credit',
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    description: Optional[str] = None
) -> None:
    """
    Soma um valor a um dos saldos do produtor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor
        bucket (str): 'available', 'pending' ou 'reserved'
        amount_cents (int): Valor a somar (zero é aceito e não gera lançamento)
        entry_type (str): Tipo do lançamento no extrato
    """
    if bucket not in BALANCE_BUCKETS:
        raise InvalidRequestError(f"Unknown balance bucket: {bucket}")
    _check_amount(amount_cents)
    if amount_cents == 0:
        return

    await get_or_create_balance(session, producer_id)
    column = _BUCKET_COLUMNS[bucket]
    result = await session.execute(
        update(ProducerBalance)
        .where(ProducerBalance.producer_id == producer_id)
        .values({column: column + amount_cents, ProducerBalance.updated_at: TIMEZONE()})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Producer balance could not be updated")

    _record(session, producer_id, entry_type, bucket, amount_cents,
            reference_type, reference_id, description)


async def credit(
    session: AsyncSession,
    producer_id: int,
    amount_cents: int,
    entry_type: str = 'withdrawal_refund',
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    description: Optional[str] = None
) -> None:
    """
    Credita o saldo disponível sem condição (ex.: devolução de saque rejeitado).
    """
    await increment(session, producer_id, 'available', amount_cents, entry_type,
                    reference_type, reference_id, description)


async def debit(
    session: AsyncSession,
    producer_id: int,
    amount_cents: int,
    fee_cents: int = 0,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    description: Optional[str] = None
) -> Optional[LedgerEntry]:
    """
    Debita o saldo disponível apenas se houver saldo suficiente.

    O total debitado é amount_cents + fee_cents, em um único UPDATE com
    a condição available_balance_cents >= total.

    Raises:
        InsufficientFundsError: Se o saldo disponível não cobrir o total
    """
    _check_amount(amount_cents)
    _check_amount(fee_cents)
    total = amount_cents + fee_cents

    await get_or_create_balance(session, producer_id)
    result = await session.execute(
        update(ProducerBalance)
        .where(
            ProducerBalance.producer_id == producer_id,
            ProducerBalance.available_balance_cents >= total
        )
        .values({
            ProducerBalance.available_balance_cents: ProducerBalance.available_balance_cents - total,
            ProducerBalance.updated_at: TIMEZONE()
        })
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        snapshot = await get_balance_snapshot(session, producer_id)
        raise InsufficientFundsError(snapshot["available_balance_cents"], amount_cents, fee_cents)

    if not total:
        return None
    return _record(session, producer_id, 'withdrawal', 'available', -total,
                   reference_type, reference_id, description)


async def _move(
    session: AsyncSession,
    producer_id: int,
    source: str,
    amount_cents: int,
    entry_type: str,
    reference_type: Optional[str],
    reference_id: Optional[int],
    description: Optional[str]
) -> bool:
    _check_amount(amount_cents)
    if amount_cents == 0:
        return True

    source_column = _BUCKET_COLUMNS[source]
    result = await session.execute(
        update(ProducerBalance)
        .where(
            ProducerBalance.producer_id == producer_id,
            source_column >= amount_cents
        )
        .values({
            source_column: source_column - amount_cents,
            ProducerBalance.available_balance_cents: ProducerBalance.available_balance_cents + amount_cents,
            ProducerBalance.updated_at: TIMEZONE()
        })
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            f"[LEDGER] Saldo {source} insuficiente para transferir {amount_cents} "
            f"centavos do produtor {producer_id}"
        )
        return False

    _record(session, producer_id, entry_type, source, -amount_cents,
            reference_type, reference_id, description)
    _record(session, producer_id, entry_type, 'available', amount_cents,
            reference_type, reference_id, description)
    return True


async def move_reserved_to_available(
    session: AsyncSession,
    producer_id: int,
    amount_cents: int,
    reference_id: Optional[int] = None,
    description: Optional[str] = None
) -> bool:
    """
    Transfere uma reserva de segurança vencida para o saldo disponível.

    Returns:
        bool: False se o saldo reservado não cobrir o valor (nada é alterado).
    """
    return await _move(session, producer_id, 'reserved', amount_cents, 'reserve_release',
                       'sale', reference_id, description)


async def move_pending_to_available(
    session: AsyncSession,
    producer_id: int,
    amount_cents: int,
    reference_id: Optional[int] = None,
    description: Optional[str] = None
) -> bool:
    return await _move(session, producer_id, 'pending', amount_cents, 'share_release',
                       'sale', reference_id, description)


async def get_balance_snapshot(session: AsyncSession, producer_id: int) -> Dict[str, int]:
    """
    Lê os três saldos atuais do produtor direto do banco.

    Returns:
        Dict[str, int]: available_balance_cents, pending_balance_cents,
            reserved_balance_cents e total_balance_cents. Produtor sem registro
            retorna zeros.
    """
    result = await session.execute(
        select(ProducerBalance)
        .where(ProducerBalance.producer_id == producer_id)
        .execution_options(populate_existing=True)
    )
    balance = result.scalar_one_or_none()
    if not balance:
        available = pending = reserved = 0
    else:
        available = balance.available_balance_cents
        pending = balance.pending_balance_cents
        reserved = balance.reserved_balance_cents

    return {
        "available_balance_cents": available,
        "pending_balance_cents": pending,
        "reserved_balance_cents": reserved,
        "total_balance_cents": available + pending + reserved,
    }
