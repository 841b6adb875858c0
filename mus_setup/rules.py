from typing import Optional

max_piedras: int = 40

default_envido_amount: int = 2

deje_points: int = 1

TURN_ORDER = ["player", "rival2", "partner", "rival1"]

TEAMS = {
    "player":  "equipo1",
    "partner": "equipo1",
    "rival1":  "equipo2",
    "rival2":  "equipo2",
}

valid_lance_order = ["grande", "chica", "pares", "juego"]

all_lances = ["grande", "chica", "pares", "juego", "punto"]

valid_envite_actions = ["paso", "envido", "ordago", "quiero", "no_quiero"]

lance_base_points = {
    "grande": 1,
    "chica":  1,
    "punto":  1,
}

pares_points = {
    "pareja": 1,
    "medias": 2,
    "duples": 3,
}

pares_hierarchy = {
    None:     0,
    "pareja": 1,
    "medias": 2,
    "duples": 3,
}

# Best first: 31 is unbeatable, then 32, then la Real (40), then 37 down to 33.
juego_hierarchy = [31, 32, 40, 37, 36, 35, 34, 33]

juego_points = {
    31: 3,
    "otro": 2,
}


def get_other_team(team: str) -> str:
    if team == "equipo1":
        return "equipo2"
    if team == "equipo2":
        return "equipo1"
    raise ValueError(f"Unrecognized team: {team}")


def get_pares_points(tipo: Optional[str]) -> int:
    if tipo is None:
        return 0
    if tipo not in pares_points:
        raise ValueError(f"Unrecognized pares type: {tipo}")
    return pares_points[tipo]


def get_juego_points(winning_value: int) -> int:
    if winning_value < 31:
        raise ValueError(f"Not a juego value: {winning_value}")
    return juego_points.get(winning_value, juego_points["otro"])


def get_lance_base_points(lance: str, winning_value: Optional[int] = None) -> int:
    """Piedras paid when every player passes.

    Pares is not in this table: its base is the winning team's own pares
    points, see ``utils.get_team_pares_points``.
    """
    if lance == "juego":
        if winning_value is None:
            raise ValueError("Juego base points need the winning juego value")
        return get_juego_points(winning_value)
    if lance == "pares":
        raise ValueError("Pares base points depend on the winning team's hands")
    if lance not in lance_base_points:
        raise ValueError(f"Unrecognized lance: {lance}")
    return lance_base_points[lance]
