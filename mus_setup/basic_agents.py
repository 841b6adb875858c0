import random
from typing import Dict, Any, List, Optional

from mus_setup.cards import Card
from mus_setup.rules import default_envido_amount, max_piedras
from mus_setup.utils import (
    compute_juego_points,
    detect_pares,
    evaluate_chica_strength,
    evaluate_grande_strength,
    evaluate_hand_overall,
    evaluate_juego_strength,
    evaluate_lance_strength,
    evaluate_pares_strength,
    has_juego,
)

# apostar: minimum to open, querer: minimum to accept, querer_mano: minimum to
# accept from mano (ties favour mano), min_absoluto: never bet or accept below.
LANCE_THRESHOLDS = {
    "grande": {"apostar": 70, "querer": 65, "querer_mano": 60, "min_absoluto": 0},
    "chica":  {"apostar": 70, "querer": 65, "querer_mano": 60, "min_absoluto": 0},
    "pares":  {"apostar": 42, "querer": 40, "querer_mano": 38, "min_absoluto": 20},
    "juego":  {"apostar": 30, "querer": 25, "querer_mano": 15, "min_absoluto": 0},
    "punto":  {"apostar": 80, "querer": 75, "querer_mano": 70, "min_absoluto": 0},
}

# Context may move apertura/aceptar but never below minimo.
ORDAGO_THRESHOLDS = {
    "grande": {"apertura": 95, "aceptar": 88, "minimo": 85},
    "chica":  {"apertura": 95, "aceptar": 88, "minimo": 85},
    "pares":  {"apertura": 90, "aceptar": 82, "minimo": 80},
    "juego":  {"apertura": 92, "aceptar": 85, "minimo": 85},
    "punto":  {"apertura": 95, "aceptar": 88, "minimo": 85},
}

BLUFF_RATES = {
    "grande": 0.08,
    "chica":  0.08,
    "juego":  0.05,
    "pares":  0.03,
    "punto":  0.02,
}

DEFAULT_CONTEXT = {
    "marcador_propio": 0,
    "marcador_rival": 0,
    "ordago_activo": False,
    "posicion": "mano",
    "pareja_ya_envido": False,
    "pareja_paso": False,
    "declaraciones_pares": {},
    "declaraciones_juego": {},
    "equipo_rival": [],
    "piedras_restantes": max_piedras,
    "apuesta_rival": 0,
    "historial_lances": [],
}


def _envite(action: str, amount: int = 0) -> Dict[str, Any]:
    return {"action": action, "amount": amount}


def _is_pair_of_aces(hand: List[Card]) -> bool:
    pares = detect_pares(hand)
    return pares["tipo"] == "pareja" and pares["valores"][0] == 1


class RandomAgent:
    """Uniform baseline used for simulations."""

    def __init__(self, rng=None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else random.Random(seed)

    def decide_mus(self, hand) -> bool:
        return self.rng.random() < 0.5

    def select_discard(self, hand) -> List[Card]:
        chosen = [c for c in hand if self.rng.random() < 0.5]
        return chosen[:3]

    def decide_envite(self, hand, lance: str, current_bet: int = 0,
                      context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        context = context or {}
        r = self.rng.random()

        if context.get("ordago_activo"):
            return _envite("quiero") if r < 0.5 else _envite("no_quiero")

        if current_bet == 0:
            if r < 0.5:
                return _envite("paso")
            if r < 0.95:
                return _envite("envido", default_envido_amount)
            return _envite("ordago", context.get("piedras_restantes", max_piedras))

        if r < 0.4:
            return _envite("quiero", current_bet)
        if r < 0.8:
            return _envite("no_quiero")
        return _envite("envido", default_envido_amount)


class HeuristicAgent:
    """Threshold player for mus, discard and envite decisions.

    Strength numbers come from ``mus_setup.utils`` and are never modified by
    context: position, score zone, opponent bets, declarations, earlier lances
    and the partner's action only move the thresholds they are compared with.
    All randomness goes through ``self.rng`` so tests can pin every branch.
    """

    def __init__(self, rng=None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else random.Random(seed)

    # ------------------------------------------------------------------ mus

    def decide_mus(self, hand) -> bool:
        """True asks for mus, False cuts."""
        cards = list(hand)
        pares = detect_pares(cards)
        pares_strength = evaluate_pares_strength(cards)
        juego = has_juego(cards)

        if pares["tipo"] == "duples":
            return False
        if compute_juego_points(cards) == 31:
            return False

        if pares["tipo"] is not None and juego:
            if pares_strength >= 40:
                return self.rng.random() < 0.05
            if pares_strength < 25 and evaluate_juego_strength(cards) < 30:
                return self.rng.random() < 0.70
            return self.rng.random() < 0.20

        if pares["tipo"] == "medias" and pares_strength >= 70:
            return self.rng.random() < 0.15

        if evaluate_grande_strength(cards) >= 92:
            return self.rng.random() < 0.10
        if evaluate_chica_strength(cards) >= 92:
            return self.rng.random() < 0.10

        overall = evaluate_hand_overall(cards)
        if overall >= 55:
            return self.rng.random() < 0.25
        if overall < 25:
            return True

        return self.rng.random() < (55 - overall) / 55

    def select_discard(self, hand) -> List[Card]:
        cards = list(hand)
        pares = detect_pares(cards)
        points = compute_juego_points(cards)

        if pares["tipo"] == "duples":
            return []
        if pares["tipo"] == "medias" and evaluate_pares_strength(cards) >= 60:
            return []
        if points == 31:
            return []

        counts: Dict[int, int] = {}
        for c in cards:
            counts[c.comparison_value] = counts.get(c.comparison_value, 0) + 1

        scored = []
        for card in cards:
            in_pair = counts[card.comparison_value] >= 2
            ordinal = card.ordinal

            value = ordinal * 2
            if in_pair:
                value += 30
            if ordinal == 8:
                value += 10
            if ordinal == 1:
                value += 8
            if 25 <= points < 31 and card.point_value >= 7:
                value += 8
            if card.point_value == 10:
                value += 5
            # Loose 5, 6 and 7 help neither grande nor chica.
            if not in_pair and 3 <= ordinal <= 5:
                value -= 5

            scored.append((value, card, in_pair))

        scored.sort(key=lambda x: x[0])

        overall = evaluate_hand_overall(cards)
        if overall < 20:
            n_discard = 3
        elif overall < 30:
            n_discard = 2
        elif overall < 45:
            n_discard = 1
        else:
            n_discard = 0

        return [card for _, card, in_pair in scored if not in_pair][:n_discard]

    # --------------------------------------------------------------- envite

    def decide_envite(self, hand, lance: str, current_bet: int = 0,
                      context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        cards = list(hand)
        strength = evaluate_lance_strength(cards, lance)
        ctx = self._build_context(context or {}, lance)

        if ctx["ordago_activo"]:
            return self._respond_to_ordago(strength, lance, ctx, cards)

        if current_bet == 0:
            return self._open(strength, lance, ctx, cards)

        return self._respond(strength, current_bet, lance, ctx, cards)

    def _build_context(self, context: Dict[str, Any], lance: str) -> Dict[str, Any]:
        merged = dict(DEFAULT_CONTEXT)
        merged.update({k: v for k, v in context.items() if v is not None})

        diferencia = merged["marcador_rival"] - merged["marcador_propio"]
        piedras_para_ganar = max_piedras - merged["marcador_propio"]
        apuesta_rival = merged["apuesta_rival"]

        if apuesta_rival >= 10:
            fuerza_inferida_rival = 80
        elif apuesta_rival >= 5:
            fuerza_inferida_rival = 70
        elif apuesta_rival >= 2:
            fuerza_inferida_rival = 55
        elif merged["pareja_paso"]:
            fuerza_inferida_rival = 40
        else:
            fuerza_inferida_rival = 50

        info_bonus = self._info_bonus(
            lance,
            merged["declaraciones_pares"],
            merged["declaraciones_juego"],
            merged["equipo_rival"],
        )

        return {
            "ordago_activo": merged["ordago_activo"],
            "es_mano": merged["posicion"] == "mano",
            "es_postre": merged["posicion"] == "postre",
            "pareja_aposto": merged["pareja_ya_envido"],
            "pareja_paso": merged["pareja_paso"],
            "zona_adentro": piedras_para_ganar <= 5,
            "zona_desesperada": diferencia >= 15,
            "piedras_restantes": merged["piedras_restantes"],
            "info_bonus": info_bonus,
            "info_ventaja": info_bonus >= 10,
            "fuerza_inferida_rival": fuerza_inferida_rival,
            "apuesta_rival": apuesta_rival,
            "ajuste_memoria": self._memory_adjustment(
                merged["historial_lances"], lance, merged["equipo_rival"]
            ),
        }

    @staticmethod
    def _info_bonus(lance: str, decl_pares: Dict[str, str], decl_juego: Dict[str, str],
                    rivals: List[str]) -> int:
        if not rivals:
            return 0

        if lance == "pares":
            if all(decl_pares.get(r) == "no" for r in rivals):
                return 15
            if any(decl_pares.get(r) == "si" for r in rivals):
                return -10

        if lance == "juego":
            if all(decl_juego.get(r) == "no" for r in rivals):
                return 15
            if any(decl_juego.get(r) == "si" for r in rivals):
                return -5

        return 0

    @staticmethod
    def _memory_adjustment(history: List[Dict[str, Any]], lance: str, rivals: List[str]) -> int:
        """Negative when earlier lances make the rivals look weak here."""
        adjustment = 0

        for entry in history:
            respuestas = entry.get("respuestas", {})
            rival_bet = any(respuestas.get(r) in ("envido", "ordago") for r in rivals)
            rival_passed = all(respuestas.get(r) in ("paso", None) for r in rivals)

            if rival_bet and entry.get("apuesta_final", 0) >= 3:
                # Grande and chica pull from the same four cards.
                if entry["lance"] == "grande" and lance == "chica":
                    adjustment -= 10
                if entry["lance"] == "chica" and lance == "grande":
                    adjustment -= 10
                if entry["lance"] == "pares" and lance in ("juego", "punto"):
                    adjustment += 5

            if rival_passed:
                adjustment -= 3

        return max(-20, min(20, adjustment))

    @staticmethod
    def _thresholds(lance: str, es_mano: bool) -> Dict[str, int]:
        t = LANCE_THRESHOLDS[lance]
        return {
            "apostar": t["apostar"],
            "querer": t["querer_mano"] if es_mano else t["querer"],
            "min_absoluto": t["min_absoluto"],
        }

    @staticmethod
    def _ordago_thresholds(lance: str, ctx: Dict[str, Any]) -> Dict[str, int]:
        base = ORDAGO_THRESHOLDS[lance]
        apertura = base["apertura"]
        aceptar = base["aceptar"]

        if ctx["zona_desesperada"]:
            apertura -= 5
            aceptar -= 8

        return {
            "apertura": max(base["minimo"], apertura),
            "aceptar": max(base["minimo"], aceptar),
            "minimo": base["minimo"],
        }

    def _bluff_amount(self, lance: str, ctx: Dict[str, Any]) -> Optional[int]:
        if ctx["zona_adentro"]:
            return None

        rate = BLUFF_RATES[lance]
        if ctx["es_postre"]:
            rate += 0.03
        if ctx["ajuste_memoria"] < -5:
            rate += 0.02
        if ctx["pareja_aposto"]:
            rate += 0.02
        if ctx["zona_desesperada"]:
            rate += 0.05

        if self.rng.random() >= rate:
            return None

        r = self.rng.random()
        if r < 0.70:
            return 2
        if r < 0.95:
            return 3
        return 4 + int(self.rng.random() * 2)

    @staticmethod
    def _bet_size(margin: int, ctx: Dict[str, Any]) -> int:
        if margin >= 25:
            amount = 5
        elif margin >= 15:
            amount = 4
        elif margin >= 8:
            amount = 3
        else:
            amount = 2

        if ctx["piedras_restantes"] <= 10 and amount > 3:
            amount = 3
        if ctx["zona_adentro"] and amount > 2:
            amount = 2
        if ctx["zona_desesperada"] and margin >= 15:
            amount += 1

        return amount

    @staticmethod
    def _raise_room(current_bet: int, ctx: Dict[str, Any]) -> int:
        return ctx["piedras_restantes"] - current_bet

    def _envido(self, amount: int, current_bet: int, ctx: Dict[str, Any]) -> Dict[str, Any]:
        room = self._raise_room(current_bet, ctx)
        return _envite("envido", max(1, min(amount, room)))

    def _respond_to_ordago(self, strength: int, lance: str, ctx: Dict[str, Any],
                           cards: List[Card]) -> Dict[str, Any]:
        # 31 from mano cannot lose the juego lance.
        if lance == "juego" and strength == 100 and ctx["es_mano"]:
            return _envite("quiero")

        if lance == "pares" and _is_pair_of_aces(cards):
            return _envite("no_quiero")

        thresholds = self._ordago_thresholds(lance, ctx)
        umbral = thresholds["aceptar"]

        if ctx["zona_adentro"]:
            umbral += 5
        if ctx["info_ventaja"]:
            umbral -= 5
        if ctx["es_mano"] and lance in ("grande", "juego"):
            umbral -= 3
        if ctx["fuerza_inferida_rival"] >= 80:
            umbral += 3
        if ctx["pareja_aposto"]:
            umbral -= 3
        if ctx["pareja_paso"]:
            umbral += 2

        umbral = max(thresholds["minimo"], umbral)

        if strength >= umbral:
            return _envite("quiero")
        return _envite("no_quiero")

    def _open(self, strength: int, lance: str, ctx: Dict[str, Any],
              cards: List[Card]) -> Dict[str, Any]:
        t = self._thresholds(lance, ctx["es_mano"])

        if strength < t["min_absoluto"]:
            return _envite("paso")

        umbral = t["apostar"] + ctx["ajuste_memoria"] - int(ctx["info_bonus"] / 3)
        if ctx["pareja_aposto"]:
            umbral -= 5
        if ctx["pareja_paso"] and strength < umbral + 10:
            umbral += 2

        if strength < umbral:
            if strength > 25:
                bluff = self._bluff_amount(lance, ctx)
                if bluff is not None:
                    return self._envido(bluff, 0, ctx)
            return _envite("paso")

        apertura = self._ordago_thresholds(lance, ctx)["apertura"]
        if strength >= apertura and not ctx["zona_adentro"]:
            if lance == "juego" and strength == 100 and ctx["es_mano"]:
                if self.rng.random() < 0.35:
                    return _envite("ordago", ctx["piedras_restantes"])
            if self.rng.random() < 0.20:
                return _envite("ordago", ctx["piedras_restantes"])

        # Slow-play from mano to catch a rival bet.
        if ctx["es_mano"] and strength >= 93 and self.rng.random() < 0.30:
            return _envite("paso")

        if ctx["zona_adentro"]:
            return self._envido(2, 0, ctx)

        return self._envido(self._bet_size(strength - umbral, ctx), 0, ctx)

    def _respond(self, strength: int, current_bet: int, lance: str, ctx: Dict[str, Any],
                 cards: List[Card]) -> Dict[str, Any]:
        t = self._thresholds(lance, ctx["es_mano"])

        if strength < t["min_absoluto"]:
            return _envite("no_quiero")

        if lance == "pares" and _is_pair_of_aces(cards):
            return _envite("no_quiero")

        umbral = t["querer"]
        if ctx["fuerza_inferida_rival"] >= 70:
            umbral += 5
        elif ctx["fuerza_inferida_rival"] >= 55:
            umbral += 2
        umbral += ctx["ajuste_memoria"]
        umbral -= int(ctx["info_bonus"] / 3)
        if ctx["pareja_paso"]:
            umbral += 3
        if ctx["pareja_aposto"]:
            umbral -= 3

        if strength < umbral:
            if current_bet <= 2 and strength >= umbral - 5 and self.rng.random() < 0.3:
                return _envite("quiero", current_bet)
            return _envite("no_quiero")

        margin = strength - umbral

        if current_bet >= 8:
            if margin >= 25:
                return _envite("quiero", current_bet)
            if margin >= 15 and self.rng.random() < 0.5:
                return _envite("quiero", current_bet)
            return _envite("no_quiero")

        if ctx["zona_adentro"]:
            if margin >= 10:
                return _envite("quiero", current_bet)
            if current_bet <= 3 and margin >= 0:
                return _envite("quiero", current_bet)
            return _envite("no_quiero")

        apertura = self._ordago_thresholds(lance, ctx)["apertura"]
        if strength >= apertura and current_bet >= 4 and self.rng.random() < 0.20:
            return _envite("ordago", ctx["piedras_restantes"])

        if self._raise_room(current_bet, ctx) >= 1:
            if (margin >= 30 and self.rng.random() < 0.40) or \
                    (margin >= 20 and self.rng.random() < 0.25):
                return self._envido(self._bet_size(margin, ctx), current_bet, ctx)

        return _envite("quiero", current_bet)
