import math
from collections.abc import Callable

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from medbook.auth.dependencies import require_staff
from medbook.core.request_guard import RequestRefused, build_gateway_guard
from medbook.models.user import User
from medbook.routes.availability_routes import error_response
from medbook.services import gateway_client
from medbook.services.gateway_client import GatewayError

router = APIRouter(tags=['gateway'])

gateway_guard = build_gateway_guard()


def call_gateway(key: str, fetch: Callable[[], dict]):
    try:
        with gateway_guard.guarded(key):
            payload = fetch()
    except RequestRefused as exc:
        retry_after = math.ceil(exc.decision.retry_after_s)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                'success': False,
                'error': 'Gateway request refused.',
                'reason': exc.decision.reason,
                'retryAfterSeconds': retry_after,
            },
            headers={'Retry-After': str(retry_after)},
        )
    except GatewayError as exc:
        return error_response(status.HTTP_502_BAD_GATEWAY, str(exc))

    return {'success': True, 'data': payload}


@router.get('/instances/{instance_name}/status')
def get_instance_status(instance_name: str, current_user: User = Depends(require_staff)):
    return call_gateway(
        f'{instance_name}:status',
        lambda: gateway_client.fetch_connection_state(instance_name),
    )


@router.get('/instances/{instance_name}/qr')
def get_instance_qr(instance_name: str, current_user: User = Depends(require_staff)):
    return call_gateway(
        f'{instance_name}:qr',
        lambda: gateway_client.fetch_qr_code(instance_name),
    )
