"""Major categories of the 97th Academy Awards, seeded into prediction lobbies."""

from __future__ import annotations

from typing import Any

CEREMONY = "97th Academy Awards"

CATEGORY_ORDER = {
    "Best Picture": 1,
    "Directing": 2,
    "Actor in a Leading Role": 3,
    "Actress in a Leading Role": 4,
    "Actor in a Supporting Role": 5,
    "Actress in a Supporting Role": 6,
    "Animated Feature Film": 7,
    "International Feature Film": 8,
    "Documentary Feature Film": 9,
    "Cinematography": 10,
}

NOMINEES: dict[str, list[Any]] = {
    "Best Picture": [
        "Anora",
        "The Brutalist",
        "A Complete Unknown",
        "Conclave",
        "Dune: Part Two",
        "Emilia Pérez",
        "I'm Still Here",
        "Nickel Boys",
        "The Substance",
        "Wicked",
    ],
    "Directing": [
        {"name": "Sean Baker", "movie": "Anora"},
        {"name": "Brady Corbet", "movie": "The Brutalist"},
        {"name": "James Mangold", "movie": "A Complete Unknown"},
        {"name": "Jacques Audiard", "movie": "Emilia Pérez"},
        {"name": "Coralie Fargeat", "movie": "The Substance"},
    ],
    "Actor in a Leading Role": [
        {"name": "Adrien Brody", "movie": "The Brutalist"},
        {"name": "Timothée Chalamet", "movie": "A Complete Unknown"},
        {"name": "Colman Domingo", "movie": "Sing Sing"},
        {"name": "Ralph Fiennes", "movie": "Conclave"},
        {"name": "Sebastian Stan", "movie": "The Apprentice"},
    ],
    "Actress in a Leading Role": [
        {"name": "Cynthia Erivo", "movie": "Wicked"},
        {"name": "Karla Sofía Gascón", "movie": "Emilia Pérez"},
        {"name": "Mikey Madison", "movie": "Anora"},
        {"name": "Demi Moore", "movie": "The Substance"},
        {"name": "Fernanda Torres", "movie": "I'm Still Here"},
    ],
    "Actor in a Supporting Role": [
        {"name": "Yura Borisov", "movie": "Anora"},
        {"name": "Kieran Culkin", "movie": "A Real Pain"},
        {"name": "Edward Norton", "movie": "A Complete Unknown"},
        {"name": "Guy Pearce", "movie": "The Brutalist"},
        {"name": "Jeremy Strong", "movie": "The Apprentice"},
    ],
    "Actress in a Supporting Role": [
        {"name": "Monica Barbaro", "movie": "A Complete Unknown"},
        {"name": "Ariana Grande", "movie": "Wicked"},
        {"name": "Felicity Jones", "movie": "The Brutalist"},
        {"name": "Isabella Rossellini", "movie": "Conclave"},
        {"name": "Zoe Saldaña", "movie": "Emilia Pérez"},
    ],
}


def category_seeds() -> list[dict[str, Any]]:
    seeds = []
    for name, nominees in NOMINEES.items():
        seeds.append(
            {
                "name": name,
                "description": f"{CEREMONY}: {name}",
                "sort_order": CATEGORY_ORDER.get(name, 100),
                "nominees": [
                    {"name": nominee, "movie": nominee} if isinstance(nominee, str) else dict(nominee)
                    for nominee in nominees
                ],
            }
        )
    return seeds
