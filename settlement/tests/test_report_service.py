"""
test_report_service.py

Testes unitários e de integração para o serviço de relatórios e dashboards.
Valida a resolução de períodos e as métricas calculadas a partir das vendas liquidadas.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from settlement.config.settings import TIMEZONE_NAME
from settlement.services import balance_ledger
from settlement.services.errors import InvalidRequestError
from settlement.services.report_service import (
    resolve_period,
    calculate_percentage_change,
    get_producer_dashboard,
    get_admin_dashboard,
    get_ledger_entries,
    generate_financial_report
)
from settlement.services.settlement_service import create_sale, on_payment_confirmed, mark_sale_status
from settlement.services.withdrawal_service import request_withdrawal, process_withdrawal


def test_calculate_percentage_change():
    assert calculate_percentage_change(150, 100) == 50
    assert calculate_percentage_change(100, 100) == 0
    assert calculate_percentage_change(100, 0) == 100
    assert calculate_percentage_change(0, 100) == -100
    assert calculate_percentage_change(0, 0) == 0


def test_resolve_period_filters():
    now = datetime(2024, 5, 15, 12, 0, tzinfo=ZoneInfo(TIMEZONE_NAME))

    start, end = resolve_period('month', now)
    assert start == datetime(2024, 5, 1, tzinfo=ZoneInfo(TIMEZONE_NAME))
    assert end == now

    start, _ = resolve_period('week', now)
    assert start.date().isoformat() == '2024-05-13'

    start, _ = resolve_period('this_year', now)
    assert start.date().isoformat() == '2024-01-01'

    start, _ = resolve_period('last_7_days', now)
    assert start == now - timedelta(days=7)


def test_resolve_explicit_range_includes_end_day():
    start, end = resolve_period('2024-01-01 to 2024-01-31')
    assert start.date().isoformat() == '2024-01-01'
    assert end.date().isoformat() == '2024-02-01'


@pytest.mark.parametrize("date_filter", ['fortnight', '2024-02-01 to 2024-01-01', 'abc to def'])
def test_resolve_period_rejects_invalid_filters(date_filter):
    with pytest.raises(InvalidRequestError):
        resolve_period(date_filter)


@pytest_asyncio.fixture
async def sales_data(async_db_session, product):
    """
    Cria três vendas liquidadas hoje (cartão, Pix e Pix reembolsado).
    """
    card = await create_sale(async_db_session, product.id, 'card')
    pix = await create_sale(async_db_session, product.id, 'pix')
    refunded = await create_sale(async_db_session, product.id, 'pix')
    await create_sale(async_db_session, product.id, 'bank_slip')

    for sale in (card, pix, refunded):
        await on_payment_confirmed(async_db_session, sale.id)
    await mark_sale_status(async_db_session, refunded.id, 'refunded')

    return {"card": card, "pix": pix, "refunded": refunded}


@pytest.mark.asyncio
async def test_producer_dashboard(async_db_session, product, sales_data):
    data = await get_producer_dashboard(async_db_session, product.producer_id, 'last_30_days')

    kpis = data["kpis"]
    assert kpis["sales_count"] == 2
    assert kpis["gross_revenue_cents"] == 20000
    assert kpis["platform_fees_cents"] == 600 + 400
    assert kpis["net_revenue_cents"] == 9400 + 9600
    assert kpis["refunds_count"] == 1
    assert kpis["refunds_total_cents"] == 10000
    assert kpis["net_revenue_change"] == 100

    assert len(data["chart_data"]) == 1
    assert data["chart_data"][0]["sales_count"] == 2
    assert len(data["recent_transactions"]) == 4
    assert data["balance"]["total_balance_cents"] == 9400 + 9600 + 9600


@pytest.mark.asyncio
async def test_producer_dashboard_filters_by_product_and_owner(
    async_db_session, product, other_producer, sales_data
):
    other = await get_producer_dashboard(async_db_session, other_producer.id)
    assert other["kpis"]["sales_count"] == 0
    assert other["recent_transactions"] == []

    filtered = await get_producer_dashboard(async_db_session, product.producer_id, product_id=product.id + 100)
    assert filtered["kpis"]["sales_count"] == 0


@pytest.mark.asyncio
async def test_admin_dashboard(async_db_session, product, sales_data):
    await balance_ledger.increment(async_db_session, product.producer_id, 'available', 10000)
    await async_db_session.commit()
    await request_withdrawal(async_db_session, product.producer_id, 2000)

    data = await get_admin_dashboard(async_db_session, 'day')

    assert data["sales"]["count"] == 2
    assert data["sales"]["platform_fees_cents"] == 1000
    assert data["refunds"]["count"] == 1
    assert data["producers"]["active_count"] == 1
    assert data["withdrawals"] == {"pending_count": 1, "pending_total_cents": 2000}
    assert data["sales_pending_reconciliation"] == 0


@pytest.mark.asyncio
async def test_ledger_entries_pagination_and_type(async_db_session, product, sales_data):
    entries, total = await get_ledger_entries(async_db_session, product.producer_id, page_size=2)
    # Três créditos de venda e três retenções de reserva
    assert total == 6
    assert len(entries) == 2

    entries, total = await get_ledger_entries(async_db_session, product.producer_id, entry_type='reserve_hold')
    assert total == 3
    assert all(e.bucket == 'reserved' for e in entries)


@pytest.mark.asyncio
async def test_financial_report_for_producer(async_db_session, product, sales_data):
    await balance_ledger.increment(async_db_session, product.producer_id, 'available', 10000)
    await async_db_session.commit()
    first = await request_withdrawal(async_db_session, product.producer_id, 2000)
    await request_withdrawal(async_db_session, product.producer_id, 1000)
    await process_withdrawal(async_db_session, first.id, 'rejected')

    report = await generate_financial_report(async_db_session, product.producer_id)

    assert report["sales"]["count"] == 2
    assert report["sales"]["producer_shares_cents"] == 19000
    assert report["refunds"]["count"] == 1
    assert report["withdrawals"]["count"] == 2
    assert report["withdrawals"]["total_cents"] == 1000
    assert report["withdrawals"]["by_status"]["rejected"] == {"count": 1, "total_cents": 2000}
    assert report["producer"]["email"] == "produtor1@example.com"
    assert "available_balance_cents" in report["producer"]
