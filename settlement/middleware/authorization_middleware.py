# D:\3xDigital\settlement\middleware\authorization_middleware.py
"""
authorization_middleware.py

Este módulo define o decorador que verifica autorização com base no papel (role) do usuário
armazenado no token JWT. Ele extrai o token do cabeçalho Authorization, decodifica-o e checa
se o usuário possui um dos papéis exigidos para acessar a rota.

Funções:
    validate_token(token: str) -> dict:
        Função auxiliar que valida um token JWT e retorna seu payload.

    require_role(allowed_roles: List[str]) -> Callable:
        Decorador que valida o papel do usuário antes de executar a rota. Caso o token seja
        inválido/ausente ou o papel não seja suficiente, retorna o erro apropriado.

Exemplo de Uso:
    @routes.get("/finance/balance")
    @require_role(["producer"])
    async def get_balance(request: web.Request) -> web.Response:
        producer_id = request["user"]["id"]
        ...
"""

import json
from functools import wraps
from typing import Callable, List, Optional

from aiohttp import web

from settlement.services.auth_service import AuthService


async def validate_token(token: str) -> Optional[dict]:
    """
    Função que valida um token JWT e retorna seu payload.

    Args:
        token (str): Token JWT completo com prefixo "Bearer"

    Returns:
        Optional[dict]: Payload do token se válido, None se o prefixo estiver ausente

    Raises:
        ValueError: Se o token for inválido ou expirado
    """
    if not token.startswith("Bearer "):
        return None

    token = token.split(" ", 1)[1]
    return AuthService.verify_jwt_token(token)


def require_role(allowed_roles: List[str]) -> Callable:
    """
    Decorador que verifica se o usuário possui um dos papéis especificados.

    Args:
        allowed_roles (List[str]): Papéis que podem acessar a rota (ex.: ["admin", "producer"]).

    Returns:
        Callable: Função decoradora que envolve o handler original.

    Raises:
        web.HTTPUnauthorized: Se o cabeçalho Authorization estiver ausente ou o token for inválido.
        web.HTTPForbidden: Se o papel do usuário não estiver em allowed_roles.
    """
    def decorator(handler: Callable) -> Callable:
        @wraps(handler)
        async def wrapper(request: web.Request) -> web.Response:
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                raise web.HTTPUnauthorized(
                    text='{"error": "Missing or invalid Authorization header"}',
                    content_type="application/json"
                )

            try:
                payload = await validate_token(auth_header)
                if not payload:
                    raise ValueError("Token inválido.")
            except ValueError as e:
                # Token expirado ou inválido
                raise web.HTTPUnauthorized(
                    text=json.dumps({"error": str(e)}),
                    content_type="application/json"
                )

            user_role = payload.get("role")
            user_id = payload.get("sub")

            if user_role not in allowed_roles:
                raise web.HTTPForbidden(
                    text='{"error": "Acesso negado: privilégio insuficiente."}',
                    content_type="application/json"
                )

            # Armazena os dados do usuário no request, para uso nas rotas.
            request["user"] = {
                "id": int(user_id) if user_id is not None else None,
                "role": user_role
            }

            return await handler(request)
        return wrapper
    return decorator
