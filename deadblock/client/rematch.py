"""Rematch status watchers for the post-game screen."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from deadblock.shared.models.rematch import RematchRequest
from deadblock.shared.polling import UNSET, PollingObserver
from deadblock.shared.services.rematch_negotiator import RematchNegotiator
from deadblock.shared.store import Credential

if TYPE_CHECKING:
    from deadblock.api.core.config import Settings


def watch_options(settings: Settings) -> dict[str, float]:
    """Configured cadence for the watchers, as keyword arguments."""
    return {
        "interval": settings.rematch_poll_interval,
        "max_interval": settings.poll_max_interval,
    }


def _request_key(request: RematchRequest | None) -> tuple[str, str | None] | None:
    return request.watch_key if request else None


def watch_rematch_request(
    negotiator: RematchNegotiator,
    credential: Credential,
    request_id: str,
    on_change: Callable[[RematchRequest | None], Any],
    *,
    interval: float = 3.0,
    initial: RematchRequest | None = UNSET,
    max_interval: float | None = 30.0,
    on_error: Callable[[Exception], Any] | None = None,
) -> Callable[[], None]:
    """Report changes of ``(status, new_game_id)`` for one request.

    ``None`` is delivered if the request disappears. Pass the request you
    just created as ``initial`` so an acceptance on the very first poll is
    still reported. Returns the disposer.
    """
    observer = PollingObserver(
        lambda: negotiator.get_request(credential, request_id),
        interval,
        key=_request_key,
        initial=initial,
        on_error=on_error,
        max_interval=max_interval,
        name=f"rematch:{request_id}",
    )
    return observer.subscribe(on_change)


def watch_pending_rematch(
    negotiator: RematchNegotiator,
    credential: Credential,
    game_id: str,
    on_change: Callable[[RematchRequest | None], Any],
    *,
    interval: float = 3.0,
    max_interval: float | None = 30.0,
    on_error: Callable[[Exception], Any] | None = None,
) -> Callable[[], None]:
    """Report the pending request of a finished game as it appears and goes away.

    Starts from "no request", so an existing pending request is reported on
    the first poll.
    """
    observer = PollingObserver(
        lambda: negotiator.get_pending_for_game(credential, game_id),
        interval,
        key=lambda request: request.id if request else None,
        initial=None,
        on_error=on_error,
        max_interval=max_interval,
        name=f"rematch-game:{game_id}",
    )
    return observer.subscribe(on_change)
