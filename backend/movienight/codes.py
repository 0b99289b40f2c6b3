from __future__ import annotations

import secrets

# A-Z and 0-9 without the look-alikes I, O, 0 and 1.
LOBBY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LOBBY_CODE_LENGTH = 4


def generate_lobby_code(length: int = LOBBY_CODE_LENGTH) -> str:
    return "".join(secrets.choice(LOBBY_CODE_ALPHABET) for _ in range(length))


def normalize_lobby_code(raw: str) -> str:
    return "".join(raw.split()).upper()
