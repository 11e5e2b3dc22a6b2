"""
Identity-provider handler registry and selection.

Explicit configuration always wins; with ``provider: auto`` the handler is
detected from the URL the login page redirected to, falling back to the
generic handler.
"""
import logging
from typing import Dict, Tuple

from .azure_ad import AZURE_AD
from .base import IdpHandler
from .generic import GENERIC
from .keycloak import KEYCLOAK
from .okta import OKTA

logger = logging.getLogger(__name__)

HANDLER_REGISTRY: Dict[str, IdpHandler] = {
    'keycloak': KEYCLOAK,
    'azure-ad': AZURE_AD,
    'okta': OKTA,
    'generic': GENERIC,
}

ALIASES: Dict[str, str] = {
    'azure': 'azure-ad',
    'entra': 'azure-ad',
    'entra-id': 'azure-ad',
    'auth0': 'generic',  # Auth0 universal login is handled by the generic heuristics
}

# Order matters: specific providers are probed before the fallback
DETECTION_ORDER: Tuple[IdpHandler, ...] = (KEYCLOAK, AZURE_AD, OKTA)


def get_handler(provider: str) -> IdpHandler:
    """Get a handler by provider type.

    Unknown provider types fall back to the generic handler with a warning.
    """
    key = ALIASES.get(provider.lower(), provider.lower())
    handler = HANDLER_REGISTRY.get(key)
    if handler is None:
        logger.warning(f"Unknown identity provider '{provider}', using generic handler")
        return GENERIC
    return handler


def detect_handler(current_url: str) -> IdpHandler:
    for handler in DETECTION_ORDER:
        if handler.detect(current_url):
            return handler
    return GENERIC


def select_handler(provider: str, current_url: str) -> IdpHandler:
    """Pick the handler for one flow execution."""
    if provider and provider.lower() != 'auto':
        handler = get_handler(provider)
        logger.debug(f"Using configured identity provider handler: {handler.name}")
        return handler

    handler = detect_handler(current_url)
    logger.info(f"Detected identity provider '{handler.name}' from {current_url}")
    return handler
