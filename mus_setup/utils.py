from typing import Any, Dict, Iterable, List, Optional, Sequence
import copy
import math

from mus_setup.cards import COMPARISON_ORDINALS, Card
from mus_setup.rules import get_pares_points, juego_hierarchy, pares_hierarchy

GRANDE_SECOND_CARD_BONUS = {
    8: {8: 20, 7: 12, 6: 8, 5: 5},
    7: {7: 15, 6: 10},
}

PAREJA_STRENGTH = {
    1: 8,    # par de ases, a trap hand
    2: 15,
    3: 20,
    4: 25,
    5: 30,
    6: 35,
    7: 38,
    8: 42,   # par de reyes
}

JUEGO_STRENGTH = {
    31: 100,
    32: 85,
    40: 70,
    37: 55,
    36: 45,
    35: 35,
    34: 25,
    33: 15,
}


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp_strength(x: float) -> int:
    return min(100, max(0, _round_half_up(x)))


def _compare_sequences(a: Sequence[int], b: Sequence[int]) -> int:
    for va, vb in zip(a, b):
        if va > vb:
            return 1
        if va < vb:
            return -1
    return 0


def get_grande_values(hand: Iterable[Card]) -> List[int]:
    return sorted((c.comparison_value for c in hand), reverse=True)


def get_chica_values(hand: Iterable[Card]) -> List[int]:
    return sorted(c.comparison_value for c in hand)


def compare_grande(hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    return _compare_sequences(get_grande_values(hand_a), get_grande_values(hand_b))


def compare_chica(hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    # Lower cards win chica, so the comparison is inverted.
    return _compare_sequences(get_chica_values(hand_b), get_chica_values(hand_a))


def detect_pares(hand: Iterable[Card]) -> Dict[str, Any]:
    counts: Dict[int, int] = {}
    for c in hand:
        counts[c.comparison_value] = counts.get(c.comparison_value, 0) + 1

    groups = sorted((v for v, n in counts.items() if n >= 2), reverse=True)

    if not groups:
        return {"tipo": None, "valores": [], "puntos": 0}

    for v in groups:
        if counts[v] == 4:
            return {"tipo": "duples", "valores": [v, v], "puntos": get_pares_points("duples")}
        if counts[v] == 3:
            return {"tipo": "medias", "valores": [v], "puntos": get_pares_points("medias")}

    if len(groups) == 2:
        return {"tipo": "duples", "valores": groups, "puntos": get_pares_points("duples")}

    return {"tipo": "pareja", "valores": groups, "puntos": get_pares_points("pareja")}


def has_pares(hand: Iterable[Card]) -> bool:
    return detect_pares(hand)["tipo"] is not None


def compare_pares(hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    pares_a = detect_pares(hand_a)
    pares_b = detect_pares(hand_b)

    tier_a = pares_hierarchy[pares_a["tipo"]]
    tier_b = pares_hierarchy[pares_b["tipo"]]
    if tier_a != tier_b:
        return 1 if tier_a > tier_b else -1

    return _compare_sequences(pares_a["valores"], pares_b["valores"])


def compute_juego_points(hand: Iterable[Card]) -> int:
    return sum(c.point_value for c in hand)


def has_juego(hand: Iterable[Card]) -> bool:
    return compute_juego_points(hand) >= 31


def get_juego_rank(value: int) -> int:
    """Higher is better; 31 ranks highest, 33 lowest."""
    if value < 31:
        raise ValueError(f"Not a juego value: {value}")
    if value not in juego_hierarchy:
        return 0
    return len(juego_hierarchy) - juego_hierarchy.index(value)


def compare_juego(hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    points_a = compute_juego_points(hand_a)
    points_b = compute_juego_points(hand_b)
    juego_a = points_a >= 31
    juego_b = points_b >= 31

    if not juego_a and not juego_b:
        return 0
    if juego_a != juego_b:
        return 1 if juego_a else -1

    rank_a = get_juego_rank(points_a)
    rank_b = get_juego_rank(points_b)
    if rank_a == rank_b:
        return 0
    return 1 if rank_a > rank_b else -1


def compare_punto(hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    points_a = compute_juego_points(hand_a)
    points_b = compute_juego_points(hand_b)
    if points_a == points_b:
        return 0
    return 1 if points_a > points_b else -1


_COMPARATORS = {
    "grande": compare_grande,
    "chica": compare_chica,
    "pares": compare_pares,
    "juego": compare_juego,
    "punto": compare_punto,
}


def compare_hands(lance: str, hand_a: Iterable[Card], hand_b: Iterable[Card]) -> int:
    if lance not in _COMPARATORS:
        raise ValueError(f"Unrecognized lance: {lance}")
    return _COMPARATORS[lance](list(hand_a), list(hand_b))


def find_lance_winner(lance: str, hands: Sequence[Iterable[Card]]) -> Optional[int]:
    """Index of the winning hand, with ``hands`` listed starting from mano.

    A tie keeps the earlier hand, so the seat closer to mano wins it. Pares and
    juego only consider hands that hold them; None means nobody qualifies.
    """
    best_idx = None
    best_hand = None

    for idx, hand in enumerate(hands):
        cards = list(hand)
        if lance == "pares" and not has_pares(cards):
            continue
        if lance == "juego" and not has_juego(cards):
            continue
        if best_hand is None or compare_hands(lance, cards, best_hand) > 0:
            best_idx = idx
            best_hand = cards

    return best_idx


def get_team_pares_points(hands: Iterable[Iterable[Card]]) -> int:
    return sum(detect_pares(h)["puntos"] for h in hands)


def _ordinals(hand: Iterable[Card], inverted: bool = False) -> List[int]:
    if inverted:
        return sorted((9 - c.ordinal for c in hand), reverse=True)
    return sorted((c.ordinal for c in hand), reverse=True)


def _top_down_strength(ordinals: List[int]) -> int:
    o1, o2, o3, o4 = ordinals

    if o1 in GRANDE_SECOND_CARD_BONUS:
        base = 70 if o1 == 8 else 50
        strength = base + GRANDE_SECOND_CARD_BONUS[o1].get(o2, o2)
    elif o1 == 6:
        strength = 35 + o2
    else:
        strength = o1 * 4 + o2 * 2

    strength += (o3 + o4) * 0.625
    return _clamp_strength(strength)


def evaluate_grande_strength(hand: Iterable[Card]) -> int:
    return _top_down_strength(_ordinals(hand))


def evaluate_chica_strength(hand: Iterable[Card]) -> int:
    return _top_down_strength(_ordinals(hand, inverted=True))


def evaluate_pares_strength(hand: Iterable[Card]) -> int:
    pares = detect_pares(hand)
    tipo = pares["tipo"]
    if tipo is None:
        return 0

    ordinals = [COMPARISON_ORDINALS[v] for v in pares["valores"]]

    if tipo == "pareja":
        return PAREJA_STRENGTH[ordinals[0]]
    if tipo == "medias":
        return _clamp_strength(50 + ordinals[0] * 4)
    return _clamp_strength(84 + ordinals[0] * 1.5 + ordinals[1] * 0.5)


def evaluate_juego_strength(hand: Iterable[Card]) -> int:
    points = compute_juego_points(hand)
    if points < 31:
        return 0
    return JUEGO_STRENGTH.get(points, 15)


def evaluate_punto_strength(hand: Iterable[Card]) -> int:
    points = compute_juego_points(hand)
    if points >= 31:
        return 0
    return _clamp_strength((points - 4) / 26 * 100)


_STRENGTH_EVALUATORS = {
    "grande": evaluate_grande_strength,
    "chica": evaluate_chica_strength,
    "pares": evaluate_pares_strength,
    "juego": evaluate_juego_strength,
    "punto": evaluate_punto_strength,
}


def evaluate_lance_strength(hand: Iterable[Card], lance: str) -> int:
    if lance not in _STRENGTH_EVALUATORS:
        raise ValueError(f"Unrecognized lance: {lance}")
    return _STRENGTH_EVALUATORS[lance](list(hand))


def evaluate_hand_overall(hand: Iterable[Card]) -> int:
    cards = list(hand)
    grande = evaluate_grande_strength(cards)
    chica = evaluate_chica_strength(cards)
    pares = evaluate_pares_strength(cards)
    juego = has_juego(cards)
    juego_o_punto = evaluate_juego_strength(cards) if juego else evaluate_punto_strength(cards)

    score = grande * 0.15 + chica * 0.15 + pares * 0.40 + juego_o_punto * 0.30
    if juego:
        score += 8
    if pares > 0:
        score += 5

    return min(100, _round_half_up(score))


def create_partial_observation_state(
    full_state: dict,
    viewing_player: str
) -> dict:
    obs = copy.deepcopy(full_state)

    for pid, info in obs["players"].items():
        if pid != viewing_player:
            info["hand"] = ["[Hidden]" for _ in info["hand"]]

    return obs
