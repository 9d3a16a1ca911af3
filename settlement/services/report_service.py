# D:\3xDigital\settlement\services\report_service.py
"""
report_service.py

Módulo responsável pelas métricas dos dashboards e pelos relatórios financeiros.
Todas as funções são somente leitura.

Funcionalidades principais:
    - Resolução de períodos (dia, semana, mês, ano, últimos dias, intervalo explícito)
    - Dashboard do produtor (receita líquida, vendas, reembolsos, gráfico, saldo)
    - Dashboard administrativo (bruto, taxas da plataforma, saques pendentes)
    - Extrato paginado de lançamentos
    - Relatório financeiro para exportação (JSON ou CSV)

Regras de Negócio:
    - Receita líquida é a soma das partes do produtor de vendas pagas no período
    - O período é aplicado sobre a data de pagamento das vendas
    - Produtores só visualizam os próprios dados

Dependências:
    - SQLAlchemy para consultas
    - settlement.models para as entidades
"""

from datetime import datetime, timedelta, time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import TIMEZONE, as_local
from settlement.models.database import Product, User
from settlement.models.finance_models import (
    Sale, LedgerEntry, WithdrawalRequest, CREDITED_STATUSES, WITHDRAWAL_STATUSES
)
from settlement.services.balance_ledger import get_balance_snapshot
from settlement.services.errors import InvalidRequestError

PERIOD_FILTERS = ('day', 'week', 'month', 'year', 'this_year', 'last_7_days', 'last_30_days')


def resolve_period(date_filter: Optional[str] = 'month', now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Converte um filtro de período em um intervalo [início, fim).

    Args:
        date_filter (Optional[str]): 'day', 'week', 'month', 'year', 'this_year',
            'last_7_days', 'last_30_days' ou 'YYYY-MM-DD to YYYY-MM-DD' (fim inclusivo)
        now (Optional[datetime]): Momento de referência

    Returns:
        Tuple[datetime, datetime]: Início e fim do intervalo, no fuso de negócio

    Raises:
        InvalidRequestError: Filtro desconhecido ou intervalo inválido
    """
    now = as_local(now) if now else TIMEZONE()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    date_filter = date_filter or 'month'

    if date_filter == 'day':
        return midnight, now
    if date_filter == 'week':
        return midnight - timedelta(days=now.weekday()), now
    if date_filter == 'month':
        return midnight.replace(day=1), now
    if date_filter in ('year', 'this_year'):
        return midnight.replace(month=1, day=1), now
    if date_filter == 'last_7_days':
        return now - timedelta(days=7), now
    if date_filter == 'last_30_days':
        return now - timedelta(days=30), now

    if ' to ' in date_filter:
        start_text, end_text = [part.strip() for part in date_filter.split(' to ', 1)]
        try:
            start_day = datetime.fromisoformat(start_text).date()
            end_day = datetime.fromisoformat(end_text).date()
        except ValueError:
            raise InvalidRequestError(f"Invalid date range: {date_filter}")
        if end_day < start_day:
            raise InvalidRequestError("End date must not be before start date")
        start = datetime.combine(start_day, time.min, tzinfo=now.tzinfo)
        end = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=now.tzinfo)
        return start, end

    raise InvalidRequestError(f"Invalid date filter: {date_filter}")


def _db_time(value: datetime) -> datetime:
    # Datas são gravadas como horário local sem fuso
    return as_local(value).replace(tzinfo=None)


def calculate_percentage_change(current_value, previous_value):
    """
    Calcula a variação percentual entre dois valores.

    Returns:
        float: Variação percentual ou 0 se não for possível calcular
    """
    if previous_value == 0:
        return 100 if current_value > 0 else 0

    return ((current_value - previous_value) / previous_value) * 100


async def _sales_totals(session: AsyncSession, start: datetime, end: datetime, *conditions) -> Dict[str, int]:
    query = select(
        func.count(Sale.id).label('count'),
        func.coalesce(func.sum(Sale.amount_total_cents), 0).label('gross'),
        func.coalesce(func.sum(Sale.platform_fee_cents), 0).label('fees'),
        func.coalesce(func.sum(Sale.producer_share_cents), 0).label('shares')
    ).where(
        and_(
            Sale.status.in_(CREDITED_STATUSES),
            Sale.paid_at >= _db_time(start),
            Sale.paid_at < _db_time(end),
            *conditions
        )
    )
    row = (await session.execute(query)).mappings().one()
    return {key: int(row[key] or 0) for key in ('count', 'gross', 'fees', 'shares')}


async def _refund_totals(session: AsyncSession, start: datetime, end: datetime, *conditions) -> Dict[str, int]:
    query = select(
        func.count(Sale.id).label('count'),
        func.coalesce(func.sum(Sale.amount_total_cents), 0).label('total')
    ).where(
        and_(
            Sale.status == 'refunded',
            Sale.paid_at >= _db_time(start),
            Sale.paid_at < _db_time(end),
            *conditions
        )
    )
    row = (await session.execute(query)).mappings().one()
    return {"count": int(row['count'] or 0), "total_cents": int(row['total'] or 0)}


async def _chart_rows(session: AsyncSession, start: datetime, end: datetime, *conditions) -> List[Dict]:
    day = func.date(Sale.paid_at)
    query = select(
        day.label('day'),
        func.count(Sale.id).label('count'),
        func.coalesce(func.sum(Sale.amount_total_cents), 0).label('gross'),
        func.coalesce(func.sum(Sale.producer_share_cents), 0).label('net')
    ).where(
        and_(
            Sale.status.in_(CREDITED_STATUSES),
            Sale.paid_at >= _db_time(start),
            Sale.paid_at < _db_time(end),
            *conditions
        )
    ).group_by(day).order_by(day)

    rows = (await session.execute(query)).mappings().all()
    return [
        {
            "date": str(row['day']),
            "sales_count": int(row['count'] or 0),
            "gross_revenue_cents": int(row['gross'] or 0),
            "net_revenue_cents": int(row['net'] or 0),
        }
        for row in rows
    ]


def sale_to_dict(sale: Sale, product_name: Optional[str] = None) -> Dict:
    return {
        "id": sale.id,
        "product_id": sale.product_id,
        "product_name": product_name,
        "buyer_email": sale.buyer_email,
        "amount_total_cents": sale.amount_total_cents,
        "platform_fee_cents": sale.platform_fee_cents,
        "producer_share_cents": sale.producer_share_cents,
        "security_reserve_cents": sale.security_reserve_cents,
        "payment_method": sale.payment_method,
        "installments": sale.installments,
        "status": sale.status,
        "paid_at": as_local(sale.paid_at).isoformat() if sale.paid_at else None,
        "release_date": sale.release_date.isoformat() if sale.release_date else None,
    }


async def get_producer_dashboard(
    session: AsyncSession,
    producer_id: int,
    date_filter: Optional[str] = 'last_30_days',
    product_id: Optional[int] = None,
    now: Optional[datetime] = None
) -> Dict:
    """
    Retorna as métricas do dashboard de um produtor.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor
        date_filter (Optional[str]): Filtro de período (ver resolve_period)
        product_id (Optional[int]): Restringe as métricas a um produto
        now (Optional[datetime]): Momento de referência

    Returns:
        Dict: KPIs, gráfico, transações recentes e saldo
    """
    start, end = resolve_period(date_filter, now)
    conditions = [Sale.producer_id == producer_id]
    if product_id:
        conditions.append(Sale.product_id == product_id)

    totals = await _sales_totals(session, start, end, *conditions)
    refunds = await _refund_totals(session, start, end, *conditions)

    # Período anterior de mesmo tamanho, para comparação
    previous = await _sales_totals(session, start - (end - start), start, *conditions)

    chart = await _chart_rows(session, start, end, *conditions)

    recent_query = select(Sale, Product.name).join(Product, Sale.product_id == Product.id).where(
        and_(*conditions)
    ).order_by(desc(Sale.created_at), desc(Sale.id)).limit(10)
    recent = (await session.execute(recent_query)).all()

    return {
        "period": {
            "filter": date_filter,
            "start": start.isoformat(),
            "end": end.isoformat()
        },
        "kpis": {
            "net_revenue_cents": totals["shares"],
            "gross_revenue_cents": totals["gross"],
            "platform_fees_cents": totals["fees"],
            "sales_count": totals["count"],
            "refunds_count": refunds["count"],
            "refunds_total_cents": refunds["total_cents"],
            "net_revenue_change": calculate_percentage_change(totals["shares"], previous["shares"]),
            "sales_count_change": calculate_percentage_change(totals["count"], previous["count"]),
        },
        "chart_data": chart,
        "recent_transactions": [sale_to_dict(sale, name) for sale, name in recent],
        "balance": await get_balance_snapshot(session, producer_id),
    }


async def get_admin_dashboard(
    session: AsyncSession,
    date_filter: Optional[str] = 'month',
    now: Optional[datetime] = None
) -> Dict:
    """
    Retorna as métricas gerais para o dashboard administrativo.

    Args:
        session (AsyncSession): Sessão do banco de dados
        date_filter (Optional[str]): Filtro de período
        now (Optional[datetime]): Momento de referência

    Returns:
        Dict: Métricas da plataforma
    """
    start, end = resolve_period(date_filter, now)

    totals = await _sales_totals(session, start, end)
    refunds = await _refund_totals(session, start, end)

    active_producers = (await session.execute(
        select(func.count(func.distinct(Sale.producer_id))).where(
            and_(
                Sale.status.in_(CREDITED_STATUSES),
                Sale.paid_at >= _db_time(start),
                Sale.paid_at < _db_time(end)
            )
        )
    )).scalar_one_or_none() or 0

    pending_withdrawals = (await session.execute(
        select(
            func.count(WithdrawalRequest.id).label('count'),
            func.coalesce(func.sum(WithdrawalRequest.amount_cents), 0).label('total')
        ).where(WithdrawalRequest.status == 'pending')
    )).mappings().one()

    unreconciled = (await session.execute(
        select(func.count(Sale.id)).where(
            and_(
                Sale.status.in_(CREDITED_STATUSES),
                Sale.paid_at.is_not(None),
                Sale.ledger_applied.is_(False)
            )
        )
    )).scalar_one_or_none() or 0

    return {
        "period": {
            "filter": date_filter,
            "start": start.isoformat(),
            "end": end.isoformat()
        },
        "sales": {
            "count": totals["count"],
            "gross_revenue_cents": totals["gross"],
            "platform_fees_cents": totals["fees"],
            "producer_shares_cents": totals["shares"]
        },
        "refunds": refunds,
        "producers": {
            "active_count": active_producers
        },
        "withdrawals": {
            "pending_count": int(pending_withdrawals['count'] or 0),
            "pending_total_cents": int(pending_withdrawals['total'] or 0)
        },
        "sales_pending_reconciliation": unreconciled,
        "chart_data": await _chart_rows(session, start, end),
    }


async def get_ledger_entries(
    session: AsyncSession,
    producer_id: int,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    entry_type: Optional[str] = None,
    page: int = 1,
    page_size: int = 20
) -> Tuple[List[LedgerEntry], int]:
    """
    Obtém o extrato de lançamentos de um produtor com opções de filtragem.

    Returns:
        Tuple[List[LedgerEntry], int]:
            - Lista de lançamentos
            - Total de lançamentos encontrados
    """
    query = select(LedgerEntry).where(LedgerEntry.producer_id == producer_id)

    if start_date:
        query = query.where(LedgerEntry.created_at >= _db_time(start_date))

    if end_date:
        query = query.where(LedgerEntry.created_at <= _db_time(end_date))

    if entry_type:
        query = query.where(LedgerEntry.entry_type == entry_type)

    # Conta o total
    count_query = select(func.count()).select_from(query.subquery())
    result = await session.execute(count_query)
    total_count = result.scalar_one()

    query = query.order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))
    query = query.offset((page - 1) * page_size).limit(page_size)

    result = await session.execute(query)
    entries = result.scalars().all()

    return entries, total_count


def ledger_entry_to_dict(entry: LedgerEntry) -> Dict:
    return {
        "id": entry.id,
        "type": entry.entry_type,
        "bucket": entry.bucket,
        "amount_cents": entry.amount_cents,
        "reference_type": entry.reference_type,
        "reference_id": entry.reference_id,
        "description": entry.description,
        "created_at": as_local(entry.created_at).isoformat() if entry.created_at else None,
    }


async def generate_financial_report(
    session: AsyncSession,
    producer_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> Dict:
    """
    Gera um relatório financeiro da plataforma ou de um produtor específico.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (Optional[int]): ID do produtor (None para relatório geral)
        start_date (Optional[datetime]): Data inicial (padrão: 30 dias atrás)
        end_date (Optional[datetime]): Data final (padrão: agora)

    Returns:
        Dict: Dados do relatório financeiro
    """
    if not end_date:
        end_date = TIMEZONE()
    if not start_date:
        start_date = end_date - timedelta(days=30)

    conditions = [Sale.producer_id == producer_id] if producer_id else []
    totals = await _sales_totals(session, start_date, end_date, *conditions)
    refunds = await _refund_totals(session, start_date, end_date, *conditions)

    report = {
        "period": {
            "start": as_local(start_date).isoformat(),
            "end": as_local(end_date).isoformat()
        },
        "sales": {
            "count": totals["count"],
            "gross_cents": totals["gross"],
            "platform_fees_cents": totals["fees"],
            "producer_shares_cents": totals["shares"]
        },
        "refunds": refunds,
        "withdrawals": {
            "count": 0,
            "total_cents": 0,
        }
    }

    if producer_id:
        producer = await session.get(User, producer_id)
        report["producer"] = {
            "id": producer_id,
            "name": producer.name if producer else "N/A",
            "email": producer.email if producer else "N/A",
            **(await get_balance_snapshot(session, producer_id))
        }

    withdrawal_conditions = [
        WithdrawalRequest.requested_at >= _db_time(start_date),
        WithdrawalRequest.requested_at <= _db_time(end_date)
    ]
    if producer_id:
        withdrawal_conditions.append(WithdrawalRequest.producer_id == producer_id)

    result = await session.execute(
        select(
            WithdrawalRequest.status,
            func.count(WithdrawalRequest.id),
            func.coalesce(func.sum(WithdrawalRequest.amount_cents), 0)
        ).where(and_(*withdrawal_conditions)).group_by(WithdrawalRequest.status)
    )
    by_status = {status: {"count": 0, "total_cents": 0} for status in WITHDRAWAL_STATUSES}
    for status, count, total in result.all():
        by_status[status] = {"count": int(count), "total_cents": int(total)}
        report["withdrawals"]["count"] += int(count)
        if status != 'rejected':
            report["withdrawals"]["total_cents"] += int(total)
    report["withdrawals"]["by_status"] = by_status

    return report
