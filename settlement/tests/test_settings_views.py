"""
test_settings_views.py

Testes de integração para os endpoints de configuração de taxas.
"""

import pytest

from settlement.tests.utils.auth_utils import auth_headers


@pytest.mark.asyncio
async def test_platform_settings_admin_only(test_client_fixture, admin_user, producer_user):
    resp = await test_client_fixture.get('/finance/settings/platform', headers=auth_headers(producer_user))
    assert resp.status == 403

    resp = await test_client_fixture.get('/finance/settings/platform', headers=auth_headers(admin_user))
    assert resp.status == 200
    data = await resp.json()
    assert data["settings"]["card_fee_percent"] == 5.0
    assert data["settings"]["withdrawal_fee_cents"] == 367


@pytest.mark.asyncio
async def test_update_platform_settings(test_client_fixture, admin_user):
    resp = await test_client_fixture.put(
        '/finance/settings/platform',
        json={"pix_fee_percent": 1.5, "card_installment_fee_percents": {"1": 4, "12": 9.9}},
        headers=auth_headers(admin_user)
    )
    assert resp.status == 200
    data = await resp.json()
    assert data["settings"]["pix_fee_percent"] == 1.5
    assert data["settings"]["card_installment_fee_percents"] == {"1": 4.0, "12": 9.9}

    resp = await test_client_fixture.put(
        '/finance/settings/platform', json={"card_fee_percent": 150}, headers=auth_headers(admin_user)
    )
    assert resp.status == 400
    assert (await resp.json())["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_producer_overrides(test_client_fixture, admin_user, producer_user, other_producer):
    resp = await test_client_fixture.put(
        f'/finance/settings/producers/{producer_user.id}',
        json={"card_release_days": 14, "withdrawal_fee_cents": 0},
        headers=auth_headers(admin_user)
    )
    assert resp.status == 200
    data = await resp.json()
    assert data["overrides"]["card_release_days"] == 14
    assert data["overrides"]["pix_fee_percent"] is None
    assert data["effective"]["card_release_days"] == 14
    assert data["effective"]["pix_fee_percent"] == 3.0

    resp = await test_client_fixture.get(
        f'/finance/settings/producers/{producer_user.id}', headers=auth_headers(producer_user)
    )
    assert resp.status == 200
    assert (await resp.json())["effective"]["withdrawal_fee_cents"] == 0

    # Outro produtor não enxerga estas configurações
    resp = await test_client_fixture.get(
        f'/finance/settings/producers/{producer_user.id}', headers=auth_headers(other_producer)
    )
    assert resp.status == 403

    resp = await test_client_fixture.put(
        f'/finance/settings/producers/{producer_user.id}',
        json={"card_release_days": 1}, headers=auth_headers(producer_user)
    )
    assert resp.status == 403


@pytest.mark.asyncio
async def test_producer_without_overrides(test_client_fixture, admin_user, producer_user):
    resp = await test_client_fixture.get(
        f'/finance/settings/producers/{producer_user.id}', headers=auth_headers(admin_user)
    )
    assert resp.status == 200
    data = await resp.json()
    assert all(value is None for value in data["overrides"].values())
    assert data["effective"]["card_fee_percent"] == 5.0


@pytest.mark.asyncio
async def test_overrides_for_unknown_producer(test_client_fixture, admin_user):
    resp = await test_client_fixture.put(
        '/finance/settings/producers/999', json={"card_fee_percent": 1}, headers=auth_headers(admin_user)
    )
    assert resp.status == 404
