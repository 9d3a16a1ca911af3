# D:\3xDigital\settlement\tests\test_settlement_service.py
"""
test_settlement_service.py

Testes da liquidação de vendas.

Funcionalidades testadas:
    - Cálculo de taxa, parte do produtor, reserva e data de liberação
    - Idempotência da confirmação de pagamento
    - Destino do crédito (pendente ou disponível)
    - Falha do crédito no saldo e reconciliação
    - Transições de status por eventos de falha, expiração e reembolso
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func

from settlement.config.settings import TIMEZONE
from settlement.models.finance_models import Sale, LedgerEntry
from settlement.services import balance_ledger
from settlement.services.errors import (
    ConfigurationError, ConflictError, InvalidRequestError, LedgerReconciliationError, NotFoundError
)
from settlement.services.fee_settings_service import update_platform_settings
from settlement.services.settlement_service import (
    create_sale,
    on_payment_confirmed,
    mark_sale_status,
    reconcile_unapplied_sales
)


async def _ledger_count(session, producer_id):
    result = await session.execute(
        select(func.count(LedgerEntry.id)).where(LedgerEntry.producer_id == producer_id)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_card_sale_settles_into_pending(async_db_session, product):
    today = TIMEZONE().date()
    sale = await create_sale(async_db_session, product.id, 'card', gateway_transaction_id='pay_1')

    result = await on_payment_confirmed(async_db_session, sale.id, paid_at_date=today, today=today)

    assert result.already_processed is False
    assert result.status == 'paid'
    assert result.platform_fee_cents == 600
    assert result.producer_share_cents == 9400
    assert result.security_reserve_cents == 400
    assert result.release_date == today + timedelta(days=30)
    assert result.ledger_bucket == 'pending'
    assert result.ledger_applied is True

    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["available_balance_cents"] == 0
    assert snapshot["pending_balance_cents"] == 9000
    assert snapshot["reserved_balance_cents"] == 400
    # Taxa e parte somam o bruto
    assert result.platform_fee_cents + result.producer_share_cents == 10000


@pytest.mark.asyncio
async def test_second_confirmation_changes_nothing(async_db_session, product):
    today = TIMEZONE().date()
    sale = await create_sale(async_db_session, product.id, 'card')

    first = await on_payment_confirmed(async_db_session, sale.id, paid_at_date=today, today=today)
    entries_after_first = await _ledger_count(async_db_session, product.producer_id)
    snapshot_after_first = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)

    second = await on_payment_confirmed(
        async_db_session, sale.id, paid_at_date=today + timedelta(days=3), today=today + timedelta(days=3)
    )

    assert second.already_processed is True
    assert second.release_date == first.release_date
    assert second.platform_fee_cents == first.platform_fee_cents
    assert await _ledger_count(async_db_session, product.producer_id) == entries_after_first
    assert await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id) == snapshot_after_first


@pytest.mark.asyncio
async def test_matured_release_credits_available(async_db_session, product):
    today = TIMEZONE().date()
    sale = await create_sale(async_db_session, product.id, 'pix')

    result = await on_payment_confirmed(
        async_db_session, sale.id, paid_at_date=today - timedelta(days=5), today=today
    )

    assert result.platform_fee_cents == 400
    assert result.ledger_bucket == 'available'
    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["available_balance_cents"] == 9200
    assert snapshot["pending_balance_cents"] == 0
    assert snapshot["reserved_balance_cents"] == 400


@pytest.mark.asyncio
async def test_paid_amount_lower_than_gross_is_rejected(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')

    with pytest.raises(InvalidRequestError):
        await on_payment_confirmed(async_db_session, sale.id, amount_cents=9999)

    refreshed = await async_db_session.get(Sale, sale.id, populate_existing=True)
    assert refreshed.status == 'pending_payment'
    assert refreshed.platform_fee_cents is None


@pytest.mark.asyncio
async def test_fees_above_gross_abort_before_writing(async_db_session, product):
    await update_platform_settings(async_db_session, {"fixed_fee_cents": 20000})
    sale = await create_sale(async_db_session, product.id, 'pix')

    with pytest.raises(ConfigurationError):
        await on_payment_confirmed(async_db_session, sale.id)

    refreshed = await async_db_session.get(Sale, sale.id, populate_existing=True)
    assert refreshed.status == 'pending_payment'


@pytest.mark.asyncio
async def test_unknown_sale(async_db_session):
    with pytest.raises(NotFoundError):
        await on_payment_confirmed(async_db_session, 12345)


@pytest.mark.asyncio
async def test_failed_sale_can_still_be_settled(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'card')
    await mark_sale_status(async_db_session, sale.id, 'failed')

    result = await on_payment_confirmed(async_db_session, sale.id)
    assert result.status == 'paid'


@pytest.mark.asyncio
async def test_subscription_sale_becomes_active(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'card', gateway_subscription_id='sub_1')
    result = await on_payment_confirmed(async_db_session, sale.id)
    assert result.status == 'active'


@pytest.mark.asyncio
async def test_cancelled_sale_is_not_settled(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')
    await mark_sale_status(async_db_session, sale.id, 'cancelled')

    result = await on_payment_confirmed(async_db_session, sale.id)

    assert result.already_processed is True
    assert result.status == 'cancelled'
    assert result.platform_fee_cents is None
    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["total_balance_cents"] == 0


@pytest.mark.asyncio
async def test_confirmation_after_refund_changes_nothing(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')
    first = await on_payment_confirmed(async_db_session, sale.id)
    await mark_sale_status(async_db_session, sale.id, 'refunded')
    before = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)

    result = await on_payment_confirmed(async_db_session, sale.id)

    assert result.already_processed is True
    assert result.status == 'refunded'
    assert result.release_date == first.release_date
    assert await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id) == before


@pytest.mark.asyncio
async def test_expiry_event_after_subscription_cancellation_is_ignored(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'card', gateway_subscription_id='sub_9')
    await on_payment_confirmed(async_db_session, sale.id)
    await mark_sale_status(async_db_session, sale.id, 'cancelled')

    updated = await mark_sale_status(async_db_session, sale.id, 'expired')
    assert updated.status == 'cancelled'


@pytest.mark.asyncio
async def test_ledger_failure_keeps_sale_paid_and_is_reconciled(async_db_session, product):
    today = TIMEZONE().date()
    sale = await create_sale(async_db_session, product.id, 'card')
    sale_id = sale.id

    with patch.object(balance_ledger, "increment", AsyncMock(side_effect=RuntimeError("database unavailable"))):
        with pytest.raises(LedgerReconciliationError):
            await on_payment_confirmed(async_db_session, sale_id, paid_at_date=today, today=today)

    refreshed = await async_db_session.get(Sale, sale_id, populate_existing=True)
    assert refreshed.status == 'paid'
    assert refreshed.ledger_applied is False
    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["total_balance_cents"] == 0

    summary = await reconcile_unapplied_sales(async_db_session)
    assert summary["reconciled"] == [sale_id]
    assert summary["failures"] == []

    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["pending_balance_cents"] == 9000
    assert snapshot["reserved_balance_cents"] == 400

    # Uma segunda reconciliação não credita de novo
    summary = await reconcile_unapplied_sales(async_db_session)
    assert summary["processed"] == 0


@pytest.mark.asyncio
async def test_repeated_confirmation_reapplies_missing_credit(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')
    sale_id = sale.id

    with patch.object(balance_ledger, "increment", AsyncMock(side_effect=RuntimeError("timeout"))):
        with pytest.raises(LedgerReconciliationError):
            await on_payment_confirmed(async_db_session, sale_id)

    result = await on_payment_confirmed(async_db_session, sale_id)
    assert result.already_processed is True
    assert result.ledger_applied is True
    snapshot = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)
    assert snapshot["total_balance_cents"] == result.producer_share_cents


@pytest.mark.asyncio
async def test_failure_event_after_payment_is_ignored(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')
    await on_payment_confirmed(async_db_session, sale.id)

    updated = await mark_sale_status(async_db_session, sale.id, 'failed')
    assert updated.status == 'paid'


@pytest.mark.asyncio
async def test_refund_does_not_touch_balance(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'pix')
    await on_payment_confirmed(async_db_session, sale.id)
    before = await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id)

    updated = await mark_sale_status(async_db_session, sale.id, 'refunded')

    assert updated.status == 'refunded'
    assert await balance_ledger.get_balance_snapshot(async_db_session, product.producer_id) == before


@pytest.mark.asyncio
async def test_expired_sale_cannot_be_refunded(async_db_session, product):
    sale = await create_sale(async_db_session, product.id, 'bank_slip')
    await mark_sale_status(async_db_session, sale.id, 'expired')

    with pytest.raises(ConflictError):
        await mark_sale_status(async_db_session, sale.id, 'refunded')


@pytest.mark.asyncio
async def test_create_sale_validations(async_db_session, product):
    with pytest.raises(InvalidRequestError):
        await create_sale(async_db_session, product.id, 'pix', installments=3)
    with pytest.raises(InvalidRequestError):
        await create_sale(async_db_session, product.id, 'crypto')
    with pytest.raises(NotFoundError):
        await create_sale(async_db_session, 999, 'card')

    await create_sale(async_db_session, product.id, 'card', gateway_transaction_id='dup')
    with pytest.raises(ConflictError):
        await create_sale(async_db_session, product.id, 'card', gateway_transaction_id='dup')
