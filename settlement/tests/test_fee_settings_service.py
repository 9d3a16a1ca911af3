"""
test_fee_settings_service.py

Testes para a resolução e atualização das configurações de taxas.

Testes:
    - Semeadura da linha da plataforma
    - Sobrescrita do produtor vencendo o padrão
    - Remoção de sobrescrita com null
    - Validação de percentuais, inteiros e campos desconhecidos
    - Erro de configuração quando a plataforma não foi semeada
"""

from decimal import Decimal

import pytest

from settlement.services.errors import ConfigurationError, InvalidRequestError, NotFoundError
from settlement.services.fee_settings_service import (
    ensure_platform_settings,
    resolve_fee_settings,
    update_platform_settings,
    update_producer_settings,
    settings_to_dict
)


@pytest.mark.asyncio
async def test_ensure_platform_settings_is_idempotent(async_db_session):
    first = await ensure_platform_settings(async_db_session)
    second = await ensure_platform_settings(async_db_session)
    assert first.id == second.id
    assert second.withdrawal_fee_cents == 367


@pytest.mark.asyncio
async def test_resolve_uses_platform_defaults(async_db_session, producer_user):
    settings = await resolve_fee_settings(async_db_session, producer_user.id)
    assert settings.card_fee_percent == Decimal("5.0")
    assert settings.fixed_fee_cents == 100
    assert settings.card_release_days == 30
    assert settings.card_installment_fee_percents == {}


@pytest.mark.asyncio
async def test_producer_override_wins(async_db_session, producer_user):
    await update_producer_settings(async_db_session, producer_user.id, {
        "card_fee_percent": 2.5,
        "withdrawal_fee_cents": 0,
        "card_installment_fee_percents": {"1": 2.0, "2": 3.0}
    })

    settings = await resolve_fee_settings(async_db_session, producer_user.id)
    assert settings.card_fee_percent == Decimal("2.5")
    # Zero é uma sobrescrita válida
    assert settings.withdrawal_fee_cents == 0
    assert settings.card_installment_fee_percents == {1: Decimal("2.0"), 2: Decimal("3.0")}
    assert settings.pix_fee_percent == Decimal("3.0")


@pytest.mark.asyncio
async def test_null_clears_override(async_db_session, producer_user):
    await update_producer_settings(async_db_session, producer_user.id, {"card_release_days": 7})
    overrides = await update_producer_settings(async_db_session, producer_user.id, {"card_release_days": None})

    assert settings_to_dict(overrides)["card_release_days"] is None
    settings = await resolve_fee_settings(async_db_session, producer_user.id)
    assert settings.card_release_days == 30


@pytest.mark.asyncio
async def test_overrides_require_existing_producer(async_db_session, admin_user):
    with pytest.raises(NotFoundError):
        await update_producer_settings(async_db_session, admin_user.id, {"card_fee_percent": 1})
    with pytest.raises(NotFoundError):
        await update_producer_settings(async_db_session, 9999, {"card_fee_percent": 1})


@pytest.mark.asyncio
@pytest.mark.parametrize("values", [
    {"card_fee_percent": 101},
    {"pix_fee_percent": -1},
    {"fixed_fee_cents": -5},
    {"card_release_days": 1.5},
    {"withdrawal_fee_cents": True},
    {"card_installment_fee_percents": {"0": 3}},
    {"unknown_field": 1},
])
async def test_invalid_values_are_rejected(async_db_session, values):
    with pytest.raises(InvalidRequestError):
        await update_platform_settings(async_db_session, values)


@pytest.mark.asyncio
async def test_platform_fields_cannot_be_null(async_db_session):
    with pytest.raises(InvalidRequestError):
        await update_platform_settings(async_db_session, {"card_fee_percent": None})


@pytest.mark.asyncio
async def test_update_platform_settings(async_db_session, producer_user):
    await update_platform_settings(async_db_session, {"pix_fee_percent": "1.99", "pix_release_days": 0})
    settings = await resolve_fee_settings(async_db_session, producer_user.id)
    assert settings.pix_fee_percent == Decimal("1.99")
    assert settings.pix_release_days == 0


@pytest.mark.asyncio
async def test_missing_platform_settings_is_configuration_error(bare_db_session):
    with pytest.raises(ConfigurationError):
        await resolve_fee_settings(bare_db_session, 1)
