"""Per-player token resolution for privileged match calls (buzz, answer, start)."""

import secrets

from sqlalchemy.orm import Session

from db import MatchPlayer
from errors import Forbidden, Unauthorized
import store


def resolve_player(session: Session, match_id: str, token: str) -> MatchPlayer:
    """The one player of ``match_id`` holding ``token``, else Unauthorized."""
    if not token:
        raise Unauthorized("Missing player token")
    player = store.find_player_by_token(session, match_id, token)
    # Equality already matched in SQL; compare_digest keeps the final check constant-time
    if player is None or not secrets.compare_digest(player.token, token):
        raise Unauthorized("Invalid player token")
    return player


def resolve_host(session: Session, match_id: str, token: str) -> MatchPlayer:
    player = resolve_player(session, match_id, token)
    if not player.is_host:
        raise Forbidden("Only host can start")
    return player
