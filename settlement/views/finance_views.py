# D:\3xDigital\settlement\views\finance_views.py
"""
finance_views.py

Módulo responsável pelos endpoints financeiros: saldo e extrato do produtor,
saques, varredura de reservas e relatórios.

Endpoints:
    - GET /finance/balance: Consulta saldo do produtor
    - GET /finance/transactions: Lista lançamentos do extrato
    - POST /finance/withdrawals/request: Solicita um saque
    - GET /finance/withdrawals: Lista solicitações de saque
    - PUT /finance/withdrawals/{withdrawal_id}/process: Processa solicitação de saque
    - POST /finance/reserves/release: Executa a varredura de reservas e liberações
    - GET /finance/reports: Gera relatórios financeiros (JSON ou CSV)

Regras de Negócio:
    - Produtores consultam apenas o próprio saldo, extrato e saques
    - Administradores informam producer_id para consultar um produtor
    - Apenas administradores processam saques e disparam a varredura

Dependências:
    - aiohttp para rotas
    - settlement.services para a lógica financeira
    - settlement.middleware.authorization_middleware para autenticação
"""

import csv
import datetime
import io

from aiohttp import web

from settlement.config.settings import DB_SESSION_KEY, TIMEZONE
from settlement.middleware.authorization_middleware import require_role
from settlement.services.balance_ledger import get_balance_snapshot
from settlement.services.errors import SettlementError, InvalidRequestError
from settlement.services.report_service import (
    get_ledger_entries,
    ledger_entry_to_dict,
    generate_financial_report
)
from settlement.services.reserve_release_service import run_sweep
from settlement.services.withdrawal_service import (
    request_withdrawal,
    process_withdrawal,
    get_withdrawal_requests,
    withdrawal_to_dict
)
from settlement.views.view_utils import error_response, query_int, target_producer_id, page_meta

# Definição das rotas
routes = web.RouteTableDef()


def _query_datetime(request: web.Request, name: str):
    raw = request.query.get(name)
    if not raw:
        return None
    try:
        return datetime.datetime.fromisoformat(raw)
    except ValueError:
        raise InvalidRequestError(f"Invalid date for {name}")


@routes.get('/finance/balance')
@require_role(['admin', 'producer'])
async def get_producer_balance(request: web.Request) -> web.Response:
    """
    Retorna os saldos do produtor autenticado (ou de producer_id, para admins).

    Returns:
        web.Response: JSON com saldo disponível, pendente e reservado em centavos
    """
    try:
        producer_id = target_producer_id(request)
        async with request.app[DB_SESSION_KEY]() as session:
            snapshot = await get_balance_snapshot(session, producer_id)
    except SettlementError as e:
        return error_response(e)

    return web.json_response({"producer_id": producer_id, **snapshot}, status=200)


@routes.get('/finance/transactions')
@require_role(['admin', 'producer'])
async def get_transactions(request: web.Request) -> web.Response:
    """
    Retorna o extrato de lançamentos do produtor.

    Query params:
        producer_id (int, opcional): ID do produtor (apenas para admins)
        start_date / end_date (str, opcional): Datas em formato ISO
        type (str, opcional): Tipo do lançamento
        page (int, opcional): Página de resultados (padrão: 1)
        page_size (int, opcional): Tamanho da página (padrão: 20)
    """
    try:
        producer_id = target_producer_id(request)
        page = query_int(request, 'page', 1)
        page_size = query_int(request, 'page_size', 20)
        start_date = _query_datetime(request, 'start_date')
        end_date = _query_datetime(request, 'end_date')

        async with request.app[DB_SESSION_KEY]() as session:
            entries, total_count = await get_ledger_entries(
                session, producer_id, start_date, end_date, request.query.get('type'), page, page_size
            )
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "transactions": [ledger_entry_to_dict(entry) for entry in entries],
        "meta": page_meta(page, page_size, total_count)
    }, status=200)


@routes.post('/finance/withdrawals/request')
@require_role(['producer'])
async def create_withdrawal(request: web.Request) -> web.Response:
    """
    Cria uma nova solicitação de saque para o produtor.

    JSON de entrada:
        {"amount_cents": 5000}

    Returns:
        web.Response: 201 com a solicitação, ou erro com os valores calculados
            quando o saldo é insuficiente
    """
    producer_id = request["user"]["id"]
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "Invalid JSON body"}, status=400)
    if not isinstance(data, dict):
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    try:
        async with request.app[DB_SESSION_KEY]() as session:
            withdrawal = await request_withdrawal(session, producer_id, data.get('amount_cents'))
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "message": "Withdrawal request created",
        "withdrawal": withdrawal_to_dict(withdrawal)
    }, status=201)


@routes.get('/finance/withdrawals')
@require_role(['admin', 'producer'])
async def list_withdrawals(request: web.Request) -> web.Response:
    """
    Lista as solicitações de saque do produtor ou de todos os produtores (para admins).

    Query params:
        producer_id (int, opcional): ID do produtor (apenas para admins)
        status (str, opcional): pending, approved, rejected, paid
        page / page_size (int, opcional): Paginação
    """
    try:
        producer_id = target_producer_id(request, required=False)
        page = query_int(request, 'page', 1)
        page_size = query_int(request, 'page_size', 20)

        async with request.app[DB_SESSION_KEY]() as session:
            withdrawals, total_count = await get_withdrawal_requests(
                session, producer_id, request.query.get('status'), page, page_size
            )
    except SettlementError as e:
        return error_response(e)

    withdrawal_data = []
    for w in withdrawals:
        item = withdrawal_to_dict(w)
        if request["user"]["role"] != 'admin':
            item["admin_notes"] = None
        withdrawal_data.append(item)

    return web.json_response({
        "withdrawals": withdrawal_data,
        "meta": page_meta(page, page_size, total_count)
    }, status=200)


@routes.put('/finance/withdrawals/{withdrawal_id}/process')
@require_role(['admin'])
async def process_withdrawal_endpoint(request: web.Request) -> web.Response:
    """
    Processa uma solicitação de saque pendente.

    JSON de entrada:
        {"status": "approved" | "rejected" | "paid", "admin_notes": "..."}
    """
    try:
        withdrawal_id = int(request.match_info['withdrawal_id'])
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "Invalid withdrawal id or JSON body"}, status=400)
    if not isinstance(data, dict):
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    decision = data.get('status') or data.get('decision')
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            withdrawal = await process_withdrawal(session, withdrawal_id, decision, data.get('admin_notes'))
    except SettlementError as e:
        return error_response(e)

    return web.json_response({
        "message": f"Withdrawal request {decision}",
        "withdrawal": withdrawal_to_dict(withdrawal)
    }, status=200)


@routes.post('/finance/reserves/release')
@require_role(['admin'])
async def release_reserves(request: web.Request) -> web.Response:
    """
    Executa a varredura: reconciliação, partes vencidas e reservas vencidas.
    """
    try:
        async with request.app[DB_SESSION_KEY]() as session:
            summary = await run_sweep(session)
    except SettlementError as e:
        return error_response(e)

    return web.json_response(summary, status=200)


@routes.get('/finance/reports')
@require_role(['admin', 'producer'])
async def get_financial_report(request: web.Request) -> web.Response:
    """
    Gera relatórios financeiros.

    Query params:
        producer_id (int, opcional): ID do produtor (apenas para admins)
        start_date / end_date (str, opcional): Datas em formato ISO
        format (str, opcional): json ou csv (padrão: json)
    """
    try:
        producer_id = target_producer_id(request, required=False)
        start_date = _query_datetime(request, 'start_date')
        end_date = _query_datetime(request, 'end_date')

        async with request.app[DB_SESSION_KEY]() as session:
            report_data = await generate_financial_report(session, producer_id, start_date, end_date)
    except SettlementError as e:
        return error_response(e)

    output_format = request.query.get('format', 'json').lower()
    if output_format != 'csv':
        return web.json_response(report_data, status=200)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Métrica", "Valor"])

    writer.writerow(["Período Início", report_data["period"]["start"]])
    writer.writerow(["Período Fim", report_data["period"]["end"]])

    writer.writerow(["Vendas - Quantidade", report_data["sales"]["count"]])
    writer.writerow(["Vendas - Bruto (centavos)", report_data["sales"]["gross_cents"]])
    writer.writerow(["Vendas - Taxas da Plataforma (centavos)", report_data["sales"]["platform_fees_cents"]])
    writer.writerow(["Vendas - Parte dos Produtores (centavos)", report_data["sales"]["producer_shares_cents"]])

    writer.writerow(["Reembolsos - Quantidade", report_data["refunds"]["count"]])
    writer.writerow(["Reembolsos - Total (centavos)", report_data["refunds"]["total_cents"]])

    writer.writerow(["Saques - Quantidade", report_data["withdrawals"]["count"]])
    writer.writerow(["Saques - Total (centavos)", report_data["withdrawals"]["total_cents"]])
    for status, values in report_data["withdrawals"]["by_status"].items():
        writer.writerow([f"Saques {status} - Quantidade", values["count"]])
        writer.writerow([f"Saques {status} - Total (centavos)", values["total_cents"]])

    if "producer" in report_data:
        writer.writerow([""])
        writer.writerow(["Produtor - ID", report_data["producer"]["id"]])
        writer.writerow(["Produtor - Nome", report_data["producer"]["name"]])
        writer.writerow(["Produtor - Email", report_data["producer"]["email"]])
        writer.writerow(["Produtor - Disponível (centavos)", report_data["producer"]["available_balance_cents"]])
        writer.writerow(["Produtor - Pendente (centavos)", report_data["producer"]["pending_balance_cents"]])
        writer.writerow(["Produtor - Reservado (centavos)", report_data["producer"]["reserved_balance_cents"]])

    output.seek(0)

    filename = (
        f"relatorio-financeiro-{'produtor-' + str(producer_id) if producer_id else 'geral'}"
        f"-{TIMEZONE().strftime('%Y%m%d')}.csv"
    )
    return web.Response(
        body=output.getvalue(),
        headers={
            'Content-Type': 'text/csv',
            'Content-Disposition': f'attachment; filename="{filename}"'
        }
    )
