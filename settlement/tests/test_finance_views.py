# D:\3xDigital\settlement\tests\test_finance_views.py
"""
test_finance_views.py

Testes de integração para os endpoints financeiros.

Funcionalidades testadas:
    - Consulta de saldo e extrato do produtor
    - Solicitação, listagem e processamento de saques
    - Varredura de reservas disparada pelo administrador
    - Geração de relatórios financeiros (JSON e CSV)

Dependências:
    - pytest e pytest-asyncio para testes assíncronos
    - aiohttp.test_utils para simulação de requisições HTTP
"""

import pytest

from settlement.services import balance_ledger
from settlement.services.settlement_service import create_sale, on_payment_confirmed
from settlement.tests.utils.auth_utils import auth_headers


async def _fund(session, producer_id, amount):
    await balance_ledger.increment(session, producer_id, 'available', amount)
    await session.commit()


@pytest.mark.asyncio
async def test_balance_requires_token(test_client_fixture):
    resp = await test_client_fixture.get('/finance/balance')
    assert resp.status == 401


@pytest.mark.asyncio
async def test_producer_balance(test_client_fixture, async_db_session, product, producer_user):
    sale = await create_sale(async_db_session, product.id, 'card')
    await on_payment_confirmed(async_db_session, sale.id)

    resp = await test_client_fixture.get('/finance/balance', headers=auth_headers(producer_user))
    assert resp.status == 200
    data = await resp.json()
    assert data["producer_id"] == producer_user.id
    assert data["pending_balance_cents"] == 9000
    assert data["reserved_balance_cents"] == 400


@pytest.mark.asyncio
async def test_admin_balance_requires_producer_id(test_client_fixture, admin_user, producer_user):
    resp = await test_client_fixture.get('/finance/balance', headers=auth_headers(admin_user))
    assert resp.status == 400

    resp = await test_client_fixture.get(
        f'/finance/balance?producer_id={producer_user.id}', headers=auth_headers(admin_user)
    )
    assert resp.status == 200
    data = await resp.json()
    assert data["total_balance_cents"] == 0


@pytest.mark.asyncio
async def test_transactions(test_client_fixture, async_db_session, product, producer_user):
    sale = await create_sale(async_db_session, product.id, 'pix')
    await on_payment_confirmed(async_db_session, sale.id)

    resp = await test_client_fixture.get(
        '/finance/transactions?type=reserve_hold', headers=auth_headers(producer_user)
    )
    assert resp.status == 200
    data = await resp.json()
    assert data["meta"]["total_count"] == 1
    assert data["transactions"][0]["amount_cents"] == 400
    assert data["transactions"][0]["reference_id"] == sale.id

    resp = await test_client_fixture.get('/finance/transactions?page=0', headers=auth_headers(producer_user))
    assert resp.status == 400


@pytest.mark.asyncio
async def test_withdrawal_lifecycle(test_client_fixture, async_db_session, producer_user, admin_user):
    await _fund(async_db_session, producer_user.id, 5500)

    resp = await test_client_fixture.post(
        '/finance/withdrawals/request', json={"amount_cents": 5000}, headers=auth_headers(producer_user)
    )
    assert resp.status == 201
    data = await resp.json()
    withdrawal_id = data["withdrawal"]["id"]
    assert data["withdrawal"]["fee_cents"] == 367
    assert data["withdrawal"]["status"] == 'pending'

    resp = await test_client_fixture.get('/finance/balance', headers=auth_headers(producer_user))
    assert (await resp.json())["available_balance_cents"] == 133

    # Produtor não processa saques
    resp = await test_client_fixture.put(
        f'/finance/withdrawals/{withdrawal_id}/process', json={"status": "approved"},
        headers=auth_headers(producer_user)
    )
    assert resp.status == 403

    resp = await test_client_fixture.put(
        f'/finance/withdrawals/{withdrawal_id}/process',
        json={"status": "rejected", "admin_notes": "Conta inválida"},
        headers=auth_headers(admin_user)
    )
    assert resp.status == 200
    assert (await resp.json())["withdrawal"]["status"] == 'rejected'

    resp = await test_client_fixture.get('/finance/balance', headers=auth_headers(producer_user))
    assert (await resp.json())["available_balance_cents"] == 5500

    resp = await test_client_fixture.put(
        f'/finance/withdrawals/{withdrawal_id}/process', json={"status": "paid"},
        headers=auth_headers(admin_user)
    )
    assert resp.status == 409

    resp = await test_client_fixture.get('/finance/withdrawals', headers=auth_headers(producer_user))
    data = await resp.json()
    assert data["meta"]["total_count"] == 1
    assert data["withdrawals"][0]["admin_notes"] is None

    resp = await test_client_fixture.get('/finance/withdrawals?status=rejected', headers=auth_headers(admin_user))
    data = await resp.json()
    assert data["withdrawals"][0]["admin_notes"] == "Conta inválida"


@pytest.mark.asyncio
async def test_withdrawal_insufficient_funds(test_client_fixture, async_db_session, producer_user):
    await _fund(async_db_session, producer_user.id, 5000)

    resp = await test_client_fixture.post(
        '/finance/withdrawals/request', json={"amount_cents": 5000}, headers=auth_headers(producer_user)
    )
    assert resp.status == 400
    data = await resp.json()
    assert data["code"] == "insufficient_funds"
    assert data["total_required_cents"] == 5367
    assert data["shortfall_cents"] == 367


@pytest.mark.asyncio
async def test_withdrawal_invalid_body(test_client_fixture, producer_user):
    resp = await test_client_fixture.post(
        '/finance/withdrawals/request', data="not json", headers=auth_headers(producer_user)
    )
    assert resp.status == 400

    resp = await test_client_fixture.post(
        '/finance/withdrawals/request', json={"amount_cents": "5000"}, headers=auth_headers(producer_user)
    )
    assert resp.status == 400


@pytest.mark.asyncio
async def test_process_unknown_withdrawal(test_client_fixture, admin_user):
    resp = await test_client_fixture.put(
        '/finance/withdrawals/999/process', json={"status": "approved"}, headers=auth_headers(admin_user)
    )
    assert resp.status == 404


@pytest.mark.asyncio
async def test_release_reserves_endpoint(test_client_fixture, admin_user, producer_user):
    resp = await test_client_fixture.post('/finance/reserves/release', headers=auth_headers(producer_user))
    assert resp.status == 403

    resp = await test_client_fixture.post('/finance/reserves/release', headers=auth_headers(admin_user))
    assert resp.status == 200
    data = await resp.json()
    assert set(data) == {"reconciliation", "shares", "reserves"}


@pytest.mark.asyncio
async def test_financial_report_json_and_csv(test_client_fixture, async_db_session, product, producer_user):
    sale = await create_sale(async_db_session, product.id, 'pix')
    await on_payment_confirmed(async_db_session, sale.id)

    resp = await test_client_fixture.get('/finance/reports', headers=auth_headers(producer_user))
    assert resp.status == 200
    data = await resp.json()
    assert data["sales"]["count"] == 1
    assert data["producer"]["id"] == producer_user.id

    resp = await test_client_fixture.get('/finance/reports?format=csv', headers=auth_headers(producer_user))
    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("text/csv")
    assert "relatorio-financeiro-produtor-" in resp.headers["Content-Disposition"]
    body = await resp.text()
    assert "Vendas - Quantidade,1" in body

    resp = await test_client_fixture.get(
        '/finance/reports?start_date=ontem', headers=auth_headers(producer_user)
    )
    assert resp.status == 400
