"""Module de retry avec backoff exponentiel pour opérations asynchrones.

Ce module fournit un décorateur de retry automatique avec backoff
exponentiel, utilisé pour les erreurs transitoires (connexion réseau
perdue, timeouts de l'API ezyVet, etc.).
"""

import logging
from collections.abc import Callable
from typing import Any

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


def async_retry_with_backoff(
    max_attempts: int = 3,
    min_wait_seconds: float = 1,
    max_wait_seconds: float = 10,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    multiplier: float = 1,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Décorateur pour retry automatique avec backoff exponentiel (async).

    L'exception d'origine est relancée après la dernière tentative
    (reraise=True), l'appelant n'a donc jamais à gérer RetryError.

    Args:
        max_attempts: Nombre maximum de tentatives (défaut: 3)
        min_wait_seconds: Attente minimale entre tentatives en secondes (défaut: 1)
        max_wait_seconds: Attente maximale entre tentatives en secondes (défaut: 10)
        exceptions: Tuple des exceptions qui déclenchent un retry
        multiplier: Multiplicateur du backoff exponentiel

    Returns:
        Décorateur de fonction

    Example:
        ```python
        @async_retry_with_backoff(max_attempts=3, exceptions=(httpx.ConnectError,))
        async def get_contacts():
            return await client.get("/contact")
        ```
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        return retry(
            retry=retry_if_exception_type(exceptions),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=multiplier,
                min=min_wait_seconds,
                max=max_wait_seconds,
            ),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )(func)

    return decorator


def _log_retry_attempt(retry_state: Any) -> None:
    """
    Logger les tentatives de retry pour observabilité.

    Args:
        retry_state: État de la tentative de retry
    """
    exception = retry_state.outcome.exception()
    logger.warning(
        f"Retry attempt {retry_state.attempt_number + 1} after {retry_state.seconds_since_start:.2f}s "
        f"for {retry_state.fn.__name__} - Exception: {exception}"
    )
