from typing import Dict, Any, List, Optional, Callable, Sequence, Union
from collections import defaultdict
import copy
import numpy as np
import logging

logger = logging.getLogger(__name__)

from mus_setup.cards import Deck, Hand
from mus_setup.utils import (
    compute_juego_points,
    create_partial_observation_state,
    detect_pares,
    find_lance_winner,
    get_team_pares_points,
    has_juego,
)
from mus_setup.rules import (
    TEAMS,
    TURN_ORDER,
    default_envido_amount,
    deje_points,
    get_lance_base_points,
    get_other_team,
    max_piedras,
    valid_envite_actions,
    valid_lance_order,
)

Listener = Callable[[str, Dict[str, Any]], None]


class EnviteState:
    """Betting state of one lance."""

    def __init__(self, lance: str):
        self.lance = lance
        self.apuesta = 0
        self.equipo_apostador: Optional[str] = None
        self.ultima_accion: Optional[str] = None
        self.respuestas: Dict[str, str] = {}
        self.pasaron: List[str] = []
        self.turno_index = 0
        self.esperando_respuesta = False
        self.equipo_debe_responder: Optional[str] = None
        self.responder_queue: List[str] = []
        self.ordago = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lance": self.lance,
            "apuesta": self.apuesta,
            "equipo_apostador": self.equipo_apostador,
            "ultima_accion": self.ultima_accion,
            "respuestas": dict(self.respuestas),
            "pasaron": list(self.pasaron),
            "turno_index": self.turno_index,
            "esperando_respuesta": self.esperando_respuesta,
            "equipo_debe_responder": self.equipo_debe_responder,
            "responder_queue": list(self.responder_queue),
            "ordago": self.ordago,
        }


class MusEnvironment:

    def __init__(self,
                 seed: Optional[int] = None,
                 verbose: bool = False):
        self.master_seed = seed
        self._rng = np.random.default_rng(self.master_seed)
        self.verbose = verbose

        self._listeners: List[Listener] = []

        self._init_game_state()
        self._init_statistics()

    # ------------------------------------------------------------ observers

    def subscribe(self, listener: Listener) -> Listener:
        self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def on(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> Listener:
        """Register ``callback`` for a single event name.

        Returns the underlying listener, which can be passed to ``unsubscribe``.
        """
        def listener(name: str, payload: Dict[str, Any]) -> None:
            if name == event:
                callback(payload)

        return self.subscribe(listener)

    def _emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload if payload is not None else {}
        for listener in list(self._listeners):
            listener(event, payload)

    def _reject(self, tipo: str, mensaje: str,
                expected: Optional[str] = None, received: Optional[str] = None) -> bool:
        logger.warning(f"Rejected action ({tipo}): {mensaje}")
        self.stats["rejected_actions"] += 1
        payload: Dict[str, Any] = {"tipo": tipo, "mensaje": mensaje}
        if expected is not None or received is not None:
            payload["expected"] = expected
            payload["received"] = received
        self._emit("error", payload)
        return False

    # ---------------------------------------------------------------- state

    def _init_game_state(self):
        self.piedras = {"equipo1": 0, "equipo2": 0}
        self.mano_index = 0
        self.fase: Optional[str] = None
        self.lance_actual: Optional[str] = None
        self.game_over = False
        self.winner: Optional[str] = None
        self.ended_by_ordago = False
        self.rounds_played = 0

        self.deck: Optional[Deck] = None
        self.discard_pile = []
        self.hands: Dict[str, Hand] = {pid: Hand() for pid in TURN_ORDER}

        self.mus_turn_index = 0
        self.descarte_turn_index = 0
        self.descartes: Dict[str, int] = {}
        self.envite = EnviteState(None)

        self.puntos_pendientes = {"equipo1": 0, "equipo2": 0}
        self.round_results: List[Dict[str, Any]] = []
        self.historial_lances: List[Dict[str, Any]] = []
        self.declaraciones_pares: Dict[str, str] = {}
        self.declaraciones_juego: Dict[str, str] = {}

        self.round_history: List[Dict[str, Any]] = []
        self._round_log: Optional[Dict[str, Any]] = None

    def _init_statistics(self):
        self.stats = {
            "rounds_played": 0,
            "mus_passes": 0,
            "reshuffles": 0,
            "lances_played": defaultdict(int),
            "lances_skipped": 0,
            "all_pass_lances": 0,
            "bets": {"equipo1": 0, "equipo2": 0},
            "quieros": {"equipo1": 0, "equipo2": 0},
            "no_quieros": {"equipo1": 0, "equipo2": 0},
            "ordagos_proposed": {"equipo1": 0, "equipo2": 0},
            "ordagos_accepted": 0,
            "lances_won": {"equipo1": 0, "equipo2": 0},
            "points_by_lance": defaultdict(lambda: {"equipo1": 0, "equipo2": 0}),
            "rejected_actions": 0,
        }

    @property
    def mano(self) -> str:
        return TURN_ORDER[self.mano_index]

    @property
    def postre(self) -> str:
        return TURN_ORDER[(self.mano_index + 3) % 4]

    def _seat(self, offset: int) -> str:
        return TURN_ORDER[(self.mano_index + offset) % 4]

    def _players_from_mano(self) -> List[str]:
        return [self._seat(i) for i in range(4)]

    def _team_from_mano(self, team: str) -> List[str]:
        return [pid for pid in self._players_from_mano() if TEAMS[pid] == team]

    @staticmethod
    def _partner(player_id: str) -> str:
        return TURN_ORDER[(TURN_ORDER.index(player_id) + 2) % 4]

    def get_current_player(self) -> Optional[str]:
        if self.game_over:
            return None
        if self.fase == "mus":
            return self._seat(self.mus_turn_index)
        if self.fase == "descarte":
            return self._seat(self.descarte_turn_index)
        if self.fase == "envite":
            if self.envite.esperando_respuesta:
                return self.envite.responder_queue[0] if self.envite.responder_queue else None
            return self._seat(self.envite.turno_index)
        return None

    def is_player_turn(self, player_id: str) -> bool:
        return player_id == self.get_current_player()

    def get_valid_actions(self, player_id: str) -> List[str]:
        if not self.is_player_turn(player_id):
            return []
        if self.fase == "mus":
            return ["mus", "cortar"]
        if self.fase == "descarte":
            return ["descarte"]
        if self.fase != "envite":
            return []
        if not self.envite.esperando_respuesta:
            return ["paso", "envido", "ordago"]
        if self.envite.ordago:
            return ["quiero", "no_quiero", "paso"]
        return ["quiero", "no_quiero", "paso", "envido", "ordago"]

    def get_state(self, viewing_player: Optional[str] = None) -> Dict[str, Any]:
        state = {
            "players": {
                pid: {"team": TEAMS[pid], "hand": [str(c) for c in self.hands[pid]]}
                for pid in TURN_ORDER
            },
            "piedras": dict(self.piedras),
            "fase": self.fase,
            "lance": self.lance_actual,
            "mano": self.mano,
            "mano_index": self.mano_index,
            "postre": self.postre,
            "current_player": self.get_current_player(),
            "envite": self.envite.to_dict(),
            "puntos_pendientes": dict(self.puntos_pendientes),
            "round_results": copy.deepcopy(self.round_results),
            "historial_lances": copy.deepcopy(self.historial_lances),
            "declaraciones_pares": dict(self.declaraciones_pares),
            "declaraciones_juego": dict(self.declaraciones_juego),
            "turn_order": list(TURN_ORDER),
            "deck_count": self.deck.count() if self.deck is not None else 0,
            "discard_pile_count": len(self.discard_pile),
            "rounds_played": self.rounds_played,
            "game_over": self.game_over,
            "winner": self.winner,
        }
        if viewing_player is not None:
            return create_partial_observation_state(state, viewing_player)
        return state

    def get_decision_context(self, player_id: str) -> Dict[str, Any]:
        team = TEAMS[player_id]
        rival_team = get_other_team(team)
        partner_response = self.envite.respuestas.get(self._partner(player_id))

        if player_id == self.mano:
            posicion = "mano"
        elif player_id == self.postre:
            posicion = "postre"
        else:
            posicion = "intermedio"

        apuesta_rival = 0
        if self.envite.esperando_respuesta and self.envite.equipo_apostador == rival_team:
            apuesta_rival = self.envite.apuesta

        return {
            "marcador_propio": self.piedras[team],
            "marcador_rival": self.piedras[rival_team],
            "ordago_activo": self.envite.ordago and self.envite.esperando_respuesta,
            "posicion": posicion,
            "pareja_ya_envido": partner_response in ("envido", "ordago"),
            "pareja_paso": partner_response == "paso",
            "declaraciones_pares": dict(self.declaraciones_pares),
            "declaraciones_juego": dict(self.declaraciones_juego),
            "equipo_rival": [pid for pid in TURN_ORDER if TEAMS[pid] == rival_team],
            "piedras_restantes": max_piedras - self.piedras[team],
            "apuesta_rival": apuesta_rival,
            "historial_lances": copy.deepcopy(self.historial_lances),
        }

    # ------------------------------------------------------------ lifecycle

    def start_game(self) -> None:
        self._init_game_state()
        self._init_statistics()

        if self.verbose:
            logger.info("######## New game ########")

        self._emit("gameStarted", {"piedras": dict(self.piedras)})
        self._start_round()

    def _start_round(self):
        self.rounds_played += 1
        self.stats["rounds_played"] += 1
        self.lance_actual = None
        self.puntos_pendientes = {"equipo1": 0, "equipo2": 0}
        self.round_results = []
        self.historial_lances = []
        self.declaraciones_pares = {}
        self.declaraciones_juego = {}
        self.envite = EnviteState(None)

        self._round_log = {
            "round": self.rounds_played,
            "mano": self.mano,
            "piedras_inicio": dict(self.piedras),
            "hands": {},
            "results": [],
        }

        if self.verbose:
            logger.info(f"######## Round {self.rounds_played} ########")
            logger.info(f"Mano: {self.mano}, postre: {self.postre}")
            logger.info(f"Piedras: {self.piedras}")

        self._emit("roundStarted", {"mano": self.mano, "postre": self.postre})
        self._deal()
        self._start_mus_phase()

    def _deal(self):
        sub_seed = int(self._rng.integers(2 ** 32))
        self.deck = Deck(seed=sub_seed)
        self.discard_pile = []
        self.hands = {pid: Hand() for pid in TURN_ORDER}

        for _ in range(4):
            for pid in self._players_from_mano():
                self.hands[pid].receive(self.deck.deal(1))

        if self.verbose:
            for pid in self._players_from_mano():
                logger.info(f"Cards of {pid}: {self.hands[pid]}")

        self._emit("cardsDealt", {"players": self._hands_payload()})

    def _hands_payload(self) -> Dict[str, List[Any]]:
        return {pid: list(self.hands[pid].cards) for pid in TURN_ORDER}

    def _emit_turn(self, **extra):
        payload = {
            "player": self.get_current_player(),
            "mano": self.mano,
            "fase": self.fase,
        }
        payload.update(extra)
        self._emit("turnChanged", payload)

    # ------------------------------------------------------------------ mus

    def _start_mus_phase(self):
        self.fase = "mus"
        self.mus_turn_index = 0

        self._emit("phaseChanged", {"fase": self.fase, "lance": None})
        self._emit("musPhaseStarted", {"mano": self.mano})
        self._emit_turn(turnoIndex=0)

    def _check_game_running(self) -> Optional[str]:
        if self.game_over:
            return "The game is over"
        if self.fase is None:
            return "The game has not started"
        return None

    def handle_mus(self, player_id: str, wants_mus: bool) -> bool:
        problem = self._check_game_running()
        if problem:
            return self._reject("fase", problem)
        if player_id not in TEAMS:
            return self._reject("jugador", f"Unknown player: {player_id}")
        if self.fase != "mus":
            return self._reject("fase", f"Not in the mus phase (current phase: {self.fase})")

        expected = self.get_current_player()
        if player_id != expected:
            return self._reject("turno", f"Not your turn, {expected} speaks", expected, player_id)

        wants_mus = bool(wants_mus)
        if self.verbose:
            logger.debug(f"{player_id} {'asks for mus' if wants_mus else 'cuts'}")

        self._emit("musResponse", {"player": player_id, "wantsMus": wants_mus})

        if not wants_mus:
            self._emit("musCortado", {"player": player_id})
            self._start_lances()
            return True

        self.mus_turn_index += 1
        if self.mus_turn_index >= 4:
            self.stats["mus_passes"] += 1
            self._start_descarte_phase()
        else:
            self._emit_turn(turnoIndex=self.mus_turn_index)

        return True

    # ------------------------------------------------------------- descarte

    def _start_descarte_phase(self):
        self.fase = "descarte"
        self.descarte_turn_index = 0
        self.descartes = {}

        self._emit("phaseChanged", {"fase": self.fase, "lance": None})
        self._emit("descartePhaseStarted", {"mano": self.mano})
        self._emit_turn(turnoIndex=0)

    @staticmethod
    def _valid_discard_indices(card_indices) -> bool:
        if not isinstance(card_indices, (list, tuple)):
            return False
        if len(card_indices) > 4:
            return False
        for idx in card_indices:
            if isinstance(idx, bool) or not isinstance(idx, (int, np.integer)):
                return False
            if idx < 0 or idx > 3:
                return False
        return len(set(card_indices)) == len(card_indices)

    def handle_descarte(self, player_id: str, card_indices: Sequence[int]) -> bool:
        problem = self._check_game_running()
        if problem:
            return self._reject("fase", problem)
        if player_id not in TEAMS:
            return self._reject("jugador", f"Unknown player: {player_id}")
        if self.fase != "descarte":
            return self._reject("fase", f"Not in the descarte phase (current phase: {self.fase})")

        expected = self.get_current_player()
        if player_id != expected:
            return self._reject("turno", f"Not your turn, {expected} discards", expected, player_id)

        if not self._valid_discard_indices(card_indices):
            return self._reject("accion", f"Invalid discard indices: {card_indices}")

        hand = self.hands[player_id]
        removed = hand.discard(int(i) for i in card_indices)

        if self.deck.count() < len(removed):
            returned = len(self.discard_pile)
            self.deck.return_cards(self.discard_pile)
            self.discard_pile = []
            self.deck.shuffle()
            self.stats["reshuffles"] += 1
            if self.verbose:
                logger.info(f"Deck exhausted, {returned} discarded cards reshuffled")
            self._emit("deckReshuffled", {"cardsReturned": returned, "deckCount": self.deck.count()})

        hand.receive(self.deck.deal(len(removed)))
        self.discard_pile.extend(removed)
        self.descartes[player_id] = len(removed)

        if self.verbose:
            logger.debug(f"{player_id} discards {len(removed)} card(s)")

        self._emit("cardsDiscarded", {"player": player_id, "count": len(removed)})

        self.descarte_turn_index += 1
        if self.descarte_turn_index >= 4:
            self._emit("descarteFinished", {"descartes": dict(self.descartes)})
            self._emit("cardsDealt", {"players": self._hands_payload()})
            self._start_mus_phase()
        else:
            self._emit_turn(turnoIndex=self.descarte_turn_index)

        return True

    # --------------------------------------------------------------- lances

    def _start_lances(self):
        self._round_log["hands"] = {pid: list(self.hands[pid].cards) for pid in TURN_ORDER}

        if self.verbose:
            logger.info(f"Mus cut, lances start from {self.mano}")

        self._emit("lancesStarted", {"mano": self.mano})
        self._start_envite("grande")

    def _detect_pares_declarations(self) -> bool:
        jugadores = []
        for pid in self._players_from_mano():
            pares = detect_pares(self.hands[pid])
            self.declaraciones_pares[pid] = "si" if pares["tipo"] else "no"
            if pares["tipo"]:
                jugadores.append({"playerId": pid, **pares})

        hay_pares = len(jugadores) > 0
        self._emit("paresDetectados", {"hayPares": hay_pares, "jugadores": jugadores})
        return hay_pares

    def _detect_juego_declarations(self) -> bool:
        jugadores = []
        for pid in self._players_from_mano():
            tiene = has_juego(self.hands[pid])
            self.declaraciones_juego[pid] = "si" if tiene else "no"
            if tiene:
                jugadores.append({"playerId": pid, "valor": compute_juego_points(self.hands[pid])})

        hay_juego = len(jugadores) > 0
        self._emit("juegoDetectado", {
            "hayJuego": hay_juego,
            "lanceResultante": "juego" if hay_juego else "punto",
            "jugadores": jugadores,
        })
        return hay_juego

    def _start_envite(self, lance: str):
        if lance == "pares" and not self._detect_pares_declarations():
            self.stats["lances_skipped"] += 1
            if self.verbose:
                logger.info("Pares skipped, nobody holds pares")
            self._emit("lanceSkipped", {"lance": "pares", "razon": "Nadie tiene pares"})
            self._next_lance("pares")
            return

        if lance == "juego" and not self._detect_juego_declarations():
            lance = "punto"

        self.fase = "envite"
        self.lance_actual = lance
        self.envite = EnviteState(lance)
        self.stats["lances_played"][lance] += 1

        if self.verbose:
            logger.info(f"--- Lance: {lance} ---")

        self._emit("phaseChanged", {"fase": self.fase, "lance": lance})
        self._emit("enviteStarted", {"lance": lance, "mano": self.mano})
        self._emit_turn(turnoIndex=0, lance=lance)

    def handle_envite(self, player_id: str, action: str, amount: Optional[int] = None) -> bool:
        problem = self._check_game_running()
        if problem:
            return self._reject("fase", problem)
        if player_id not in TEAMS:
            return self._reject("jugador", f"Unknown player: {player_id}")
        if self.fase != "envite":
            return self._reject("fase", f"Not in the envite phase (current phase: {self.fase})")

        expected = self.get_current_player()
        if player_id != expected:
            if self.envite.esperando_respuesta:
                mensaje = f"{self.envite.equipo_debe_responder} must answer, {expected} speaks"
            else:
                mensaje = f"Not your turn, {expected} speaks"
            return self._reject("turno", mensaje, expected, player_id)

        if action not in valid_envite_actions:
            return self._reject("accion", f"Invalid action: {action}")

        if action in ("quiero", "no_quiero") and not self.envite.esperando_respuesta:
            return self._reject("accion", f"There is no bet to answer with {action}")

        if action in ("envido", "ordago") and self.envite.ordago:
            return self._reject("accion", "An ordago can only be answered with quiero, no_quiero or paso")

        if action == "envido":
            if amount is None:
                amount = default_envido_amount
            if isinstance(amount, bool) or not isinstance(amount, (int, np.integer)) or amount < 1:
                return self._reject("accion", f"Invalid envido amount: {amount}")

        team = TEAMS[player_id]

        if action == "paso":
            self._handle_paso(player_id, team)
        elif action == "envido":
            self._handle_envido(player_id, team, int(amount))
        elif action == "ordago":
            self._handle_ordago(player_id, team)
        elif action == "quiero":
            self._handle_quiero(player_id, team)
        else:
            self._handle_no_quiero(player_id, team)

        return True

    def _log_action(self, player_id: str, action: str):
        if self.verbose:
            logger.debug(f"{player_id} -> {action} (apuesta={self.envite.apuesta})")

    def _handle_paso(self, player_id: str, team: str):
        self.envite.respuestas[player_id] = "paso"
        self.envite.pasaron.append(player_id)
        self._log_action(player_id, "paso")
        self._emit("enviteAction", {"player": player_id, "action": "paso", "apuesta": self.envite.apuesta})

        if self.envite.esperando_respuesta:
            self.envite.responder_queue.pop(0)
            if not self.envite.responder_queue:
                self._handle_no_quiero(player_id, team)
                return
            self._emit_turn(
                lance=self.lance_actual,
                esperandoRespuesta=True,
                equipoDebeResponder=self.envite.equipo_debe_responder,
            )
            return

        self.envite.turno_index += 1
        if self.envite.turno_index >= 4:
            self._resolve_lance(razon="paso")
            return

        self._emit_turn(turnoIndex=self.envite.turno_index, lance=self.lance_actual)

    def _open_response(self, team: str):
        rival = get_other_team(team)
        self.envite.equipo_apostador = team
        self.envite.esperando_respuesta = True
        self.envite.equipo_debe_responder = rival
        self.envite.responder_queue = self._team_from_mano(rival)
        self.envite.pasaron = []

    def _handle_envido(self, player_id: str, team: str, amount: int):
        if self.envite.apuesta == 0:
            self.envite.apuesta = amount
        else:
            self.envite.apuesta += amount
        self.envite.ultima_accion = "envido"
        self.envite.respuestas[player_id] = "envido"
        self._open_response(team)
        self.stats["bets"][team] += 1

        self._log_action(player_id, f"envido {amount}")
        self._emit("enviteAction", {"player": player_id, "action": "envido", "apuesta": self.envite.apuesta})
        self._emit_turn(
            lance=self.lance_actual,
            esperandoRespuesta=True,
            equipoDebeResponder=self.envite.equipo_debe_responder,
        )

    def _handle_ordago(self, player_id: str, team: str):
        self.envite.apuesta = max(self.envite.apuesta, max_piedras - self.piedras[team])
        self.envite.ultima_accion = "ordago"
        self.envite.respuestas[player_id] = "ordago"
        self.envite.ordago = True
        self._open_response(team)
        self.stats["bets"][team] += 1
        self.stats["ordagos_proposed"][team] += 1

        self._log_action(player_id, "ordago")
        self._emit("enviteAction", {"player": player_id, "action": "ordago", "apuesta": self.envite.apuesta})
        self._emit_turn(
            lance=self.lance_actual,
            esperandoRespuesta=True,
            equipoDebeResponder=self.envite.equipo_debe_responder,
            ordago=True,
        )

    def _handle_quiero(self, player_id: str, team: str):
        self.envite.respuestas[player_id] = "quiero"
        self.envite.esperando_respuesta = False
        self.envite.responder_queue = []
        self.stats["quieros"][team] += 1

        self._log_action(player_id, "quiero")
        self._emit("enviteAction", {"player": player_id, "action": "quiero", "apuesta": self.envite.apuesta})

        if self.envite.ordago:
            self._resolve_ordago()
        else:
            self._resolve_lance(razon="quiero")

    def _handle_no_quiero(self, player_id: str, team: str):
        self.envite.respuestas[player_id] = "no_quiero"
        self.envite.esperando_respuesta = False
        self.envite.responder_queue = []
        self.stats["no_quieros"][team] += 1

        self._log_action(player_id, "no_quiero")
        self._emit("enviteAction", {"player": player_id, "action": "no_quiero", "apuesta": self.envite.apuesta})

        ganador = self.envite.equipo_apostador
        self._record_lance_result(ganador, deje_points, razon="no_quiero")
        self._next_lance(self.lance_actual)

    # ----------------------------------------------------------- resolution

    def resolve_lance_winner(self, lance: str) -> Optional[str]:
        """Team holding the best hand for ``lance``; ties go to the seat closest to mano."""
        order = self._players_from_mano()
        idx = find_lance_winner(lance, [self.hands[pid] for pid in order])
        if idx is None:
            return None
        return TEAMS[order[idx]]

    def _winning_player(self, lance: str) -> Optional[str]:
        order = self._players_from_mano()
        idx = find_lance_winner(lance, [self.hands[pid] for pid in order])
        return order[idx] if idx is not None else None

    def _all_pass_points(self, lance: str, winner_id: str) -> int:
        team = TEAMS[winner_id]
        if lance == "pares":
            return get_team_pares_points(self.hands[pid] for pid in TURN_ORDER if TEAMS[pid] == team)
        if lance == "juego":
            return get_lance_base_points("juego", compute_juego_points(self.hands[winner_id]))
        return get_lance_base_points(lance)

    def _resolve_lance(self, razon: str):
        self.fase = "resolucion"
        lance = self.lance_actual
        winner_id = self._winning_player(lance)
        ganador = TEAMS[winner_id] if winner_id is not None else None

        if razon == "paso":
            self.stats["all_pass_lances"] += 1
            puntos = self._all_pass_points(lance, winner_id) if winner_id is not None else 0
        else:
            puntos = self.envite.apuesta

        self._record_lance_result(ganador, puntos, razon=razon)
        self._next_lance(lance)

    def _record_lance_result(self, ganador: Optional[str], puntos: int, razon: str,
                             ordago: bool = False):
        lance = self.lance_actual

        if ganador is not None:
            self.puntos_pendientes[ganador] += puntos
            self.stats["lances_won"][ganador] += 1
            self.stats["points_by_lance"][lance][ganador] += puntos

        result = {"lance": lance, "ganador": ganador, "puntos": puntos}
        self.round_results.append(result)
        self._round_log["results"].append(dict(result, razon=razon))
        self.historial_lances.append({
            "lance": lance,
            "respuestas": dict(self.envite.respuestas),
            "apuesta_final": self.envite.apuesta,
            "ganador": ganador,
        })

        if self.verbose:
            logger.info(f"{lance} won by {ganador} for {puntos} piedra(s) ({razon})")

        payload = {"lance": lance, "ganador": ganador, "puntos": puntos, "razon": razon}
        if ordago:
            payload["ordago"] = True
        self._emit("lanceResolved", payload)

    def _resolve_ordago(self):
        self.fase = "resolucion"
        ganador = self.resolve_lance_winner(self.lance_actual)
        self.stats["ordagos_accepted"] += 1

        self._record_lance_result(ganador, self.envite.apuesta, razon="quiero", ordago=True)

        self.piedras[ganador] = max_piedras
        self.ended_by_ordago = True
        self._finish_game(ganador, ordago=True)

    def _next_lance(self, lance: str):
        if lance == "punto" or lance == valid_lance_order[-1]:
            self._finish_round()
            return
        self._start_envite(valid_lance_order[valid_lance_order.index(lance) + 1])

    def _finish_round(self):
        self.fase = "resolucion"
        ganador = None

        for result in self.round_results:
            team = result["ganador"]
            if team is None:
                continue
            self.piedras[team] = min(max_piedras, self.piedras[team] + result["puntos"])
            if self.piedras[team] >= max_piedras:
                ganador = team
                break

        if self.verbose:
            logger.info(f"Round {self.rounds_played} finished. Pending: {self.puntos_pendientes}, "
                        f"piedras: {self.piedras}")

        self._emit("roundFinished", {
            "puntosPendientes": dict(self.puntos_pendientes),
            "piedras": dict(self.piedras),
        })

        if ganador is not None:
            self._finish_game(ganador)
            return

        self._close_round_log()
        self.mano_index = (self.mano_index + 1) % 4
        self._start_round()

    def _close_round_log(self):
        if self._round_log is None:
            return
        self._round_log["piedras_fin"] = dict(self.piedras)
        self._round_log["historial_lances"] = copy.deepcopy(self.historial_lances)
        self.round_history.append(self._round_log)
        self._round_log = None

    def _finish_game(self, ganador: str, ordago: bool = False):
        self.game_over = True
        self.winner = ganador
        self._close_round_log()

        if self.verbose:
            logger.info("######## GAME OVER ########")
            logger.info(f"Winner: {ganador}{' by ordago' if ordago else ''}")
            logger.info(f"Final piedras: {self.piedras}")

        payload = {"ganador": ganador, "piedras": dict(self.piedras)}
        if ordago:
            payload["ordago"] = True
        self._emit("gameOver", payload)

    # ------------------------------------------------------------ self-play

    def _coerce_envite(self, player_id: str, decision: Dict[str, Any]) -> Dict[str, Any]:
        valid = self.get_valid_actions(player_id)
        action = decision.get("action")
        amount = decision.get("amount")

        if action not in valid:
            action = "no_quiero" if self.envite.ordago else "paso"
        if action == "envido" and (not isinstance(amount, (int, np.integer)) or amount < 1):
            amount = default_envido_amount

        return {"action": action, "amount": amount if action == "envido" else None}

    def play_full_game(self, agents: Union[Dict[str, Any], Sequence[Any]],
                       max_steps: int = 20000) -> Dict[str, Any]:
        """Play one game with an agent per seat.

        ``agents`` maps seat ids to agents, or lists them in ``TURN_ORDER``.
        Each agent needs ``decide_mus``, ``select_discard`` and ``decide_envite``.
        """
        if not isinstance(agents, dict):
            agents = dict(zip(TURN_ORDER, agents))

        self.start_game()
        steps = 0

        while not self.game_over and steps < max_steps:
            steps += 1
            player_id = self.get_current_player()
            agent = agents[player_id]
            hand = self.hands[player_id]

            if self.fase == "mus":
                self.handle_mus(player_id, agent.decide_mus(list(hand)))

            elif self.fase == "descarte":
                chosen = agent.select_discard(list(hand))
                indices = [hand.cards.index(c) for c in chosen if c in hand.cards]
                if not self.handle_descarte(player_id, indices):
                    self.handle_descarte(player_id, [])

            elif self.fase == "envite":
                current_bet = self.envite.apuesta if self.envite.esperando_respuesta else 0
                decision = agent.decide_envite(
                    list(hand),
                    self.lance_actual,
                    current_bet,
                    self.get_decision_context(player_id),
                )
                move = self._coerce_envite(player_id, decision)
                if not self.handle_envite(player_id, move["action"], move["amount"]):
                    self.handle_envite(player_id, "no_quiero" if self.envite.esperando_respuesta else "paso")

        if not self.game_over:
            logger.warning(f"Game stopped after {max_steps} steps without a winner")

        return {
            "winner": self.winner,
            "piedras": dict(self.piedras),
            "rounds_played": self.rounds_played,
            "completed": self.game_over,
            "ordago": self.ended_by_ordago,
            "statistics": self.get_episode_statistics(),
        }

    def get_episode_statistics(self) -> Dict[str, Any]:
        stats = {
            "rounds_played": self.stats["rounds_played"],
            "mus_passes": self.stats["mus_passes"],
            "avg_mus_passes_per_round": self.stats["mus_passes"] / max(1, self.stats["rounds_played"]),
            "reshuffles": self.stats["reshuffles"],
            "lances_skipped": self.stats["lances_skipped"],
            "all_pass_lances": self.stats["all_pass_lances"],
            "ordagos_accepted": self.stats["ordagos_accepted"],
            "rejected_actions": self.stats["rejected_actions"],
        }

        for lance, count in self.stats["lances_played"].items():
            stats[f"{lance}_played"] = count

        for team in ("equipo1", "equipo2"):
            prefix = f"{team}_"
            bets = self.stats["bets"][team]
            answered = self.stats["quieros"][team] + self.stats["no_quieros"][team]
            stats.update({
                prefix + "piedras": self.piedras[team],
                prefix + "bets": bets,
                prefix + "ordagos_proposed": self.stats["ordagos_proposed"][team],
                prefix + "lances_won": self.stats["lances_won"][team],
                prefix + "acceptance_rate": self.stats["quieros"][team] / max(1, answered),
            })
            for lance, points in self.stats["points_by_lance"].items():
                stats[prefix + f"points_{lance}"] = points[team]

        return stats
