"""Thin client for the WhatsApp messaging gateway's instance endpoints."""

import logging

import requests

from medbook.core import config

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The messaging gateway could not be reached or answered with an error."""


def _get(path: str) -> dict:
    if not config.GATEWAY_BASE_URL:
        raise GatewayError('Messaging gateway is not configured.')

    url = f'{config.GATEWAY_BASE_URL.rstrip("/")}/{path}'
    try:
        response = requests.get(
            url,
            headers={'apikey': config.GATEWAY_API_KEY},
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as exc:
        logger.error('Messaging gateway request to %s failed: %s', path, exc)
        raise GatewayError('Messaging gateway request failed.') from exc
    except ValueError as exc:
        logger.error('Messaging gateway returned a non-JSON body for %s', path)
        raise GatewayError('Messaging gateway returned an invalid response.') from exc


def fetch_connection_state(instance_name: str) -> dict:
    return _get(f'instance/connectionState/{instance_name}')


def fetch_qr_code(instance_name: str) -> dict:
    return _get(f'instance/connect/{instance_name}')
