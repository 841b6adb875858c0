import pytest
from unittest.mock import MagicMock

from mus_setup.cards import SUITS, Card, Hand
from mus_setup.mus_environment import MusEnvironment, EnviteState
from mus_setup.basic_agents import HeuristicAgent, RandomAgent
from mus_setup.rules import TEAMS, TURN_ORDER


def make_hand(*values):
    return Hand([Card(v, SUITS[i % 4]) for i, v in enumerate(values)])


# Seats from mano on round one: player, rival2, partner, rival1.
DEFAULT_HANDS = {
    "player": (12, 12, 11, 1),   # best grande, pareja de reyes, 31
    "rival2": (4, 5, 6, 7),
    "partner": (1, 4, 5, 6),     # best chica
    "rival1": (10, 11, 4, 5),
}


class Recorder:
    def __init__(self, env):
        self.events = []
        env.subscribe(self)

    def __call__(self, name, payload):
        self.events.append((name, payload))

    def names(self):
        return [name for name, _ in self.events]

    def payloads(self, name):
        return [payload for n, payload in self.events if n == name]


def all_cards(env):
    cards = [c for pid in TURN_ORDER for c in env.hands[pid]]
    return cards + list(env.deck.cards) + list(env.discard_pile)


def start_with_hands(hands=None, **kwargs):
    env = MusEnvironment(seed=1, **kwargs)
    env.start_game()
    for pid, values in (hands or DEFAULT_HANDS).items():
        env.hands[pid] = make_hand(*values)
    return env


def cut(env):
    assert env.handle_mus(env.mano, False)


def pass_lance(env):
    for _ in range(4):
        assert env.handle_envite(env.get_current_player(), "paso")


class TestStart:
    def test_start_game_events(self):
        env = MusEnvironment(seed=3)
        rec = Recorder(env)
        env.start_game()

        names = rec.names()
        assert names[:3] == ["gameStarted", "roundStarted", "cardsDealt"]
        assert "musPhaseStarted" in names
        assert names[-1] == "turnChanged"
        assert rec.payloads("phaseChanged")[0] == {"fase": "mus", "lance": None}
        assert rec.payloads("turnChanged")[-1]["player"] == "player"

    def test_initial_deal(self):
        env = MusEnvironment(seed=3)
        env.start_game()

        for pid in TURN_ORDER:
            assert len(env.hands[pid]) == 4
        assert env.deck.count() == 24
        assert len(set(all_cards(env))) == 40
        assert env.mano == "player"
        assert env.postre == "rival1"
        assert env.fase == "mus"

    def test_seeded_deals_repeat(self):
        a = MusEnvironment(seed=9)
        b = MusEnvironment(seed=9)
        a.start_game()
        b.start_game()
        assert [a.hands[p].cards for p in TURN_ORDER] == [b.hands[p].cards for p in TURN_ORDER]

    def test_cards_dealt_payload(self):
        env = MusEnvironment(seed=5)
        rec = Recorder(env)
        env.start_game()
        dealt = rec.payloads("cardsDealt")[0]["players"]
        assert set(dealt) == set(TURN_ORDER)
        assert dealt["rival2"] == env.hands["rival2"].cards


class TestObservers:
    def test_on_filters_event(self):
        env = MusEnvironment(seed=0)
        callback = MagicMock()
        env.on("roundStarted", callback)
        env.start_game()
        callback.assert_called_once_with({"mano": "player", "postre": "rival1"})

    def test_unsubscribe(self):
        env = MusEnvironment(seed=0)
        callback = MagicMock()
        listener = env.on("gameStarted", callback)
        env.unsubscribe(listener)
        env.start_game()
        callback.assert_not_called()


class TestMusAndDescarte:
    def test_mus_round_goes_to_descarte(self):
        env = MusEnvironment(seed=2)
        env.start_game()
        for pid in ["player", "rival2", "partner", "rival1"]:
            assert env.get_valid_actions(pid) == ["mus", "cortar"]
            assert env.handle_mus(pid, True)
        assert env.fase == "descarte"
        assert env.get_current_player() == "player"
        assert env.stats["mus_passes"] == 1

    def test_cut_starts_grande(self):
        env = MusEnvironment(seed=2)
        rec = Recorder(env)
        env.start_game()
        env.handle_mus("player", True)
        assert env.handle_mus("rival2", False)

        assert env.fase == "envite"
        assert env.lance_actual == "grande"
        assert "musCortado" in rec.names()
        assert rec.payloads("enviteStarted")[0] == {"lance": "grande", "mano": "player"}
        assert env.get_current_player() == "player"

    def test_descarte_replaces_cards(self):
        env = MusEnvironment(seed=4)
        rec = Recorder(env)
        env.start_game()
        for pid in TURN_ORDER:
            env.handle_mus(env.get_current_player(), True)

        kept = env.hands["player"].cards[2:]
        assert env.handle_descarte("player", [0, 1])
        assert env.hands["player"].cards[:2] == kept
        assert len(env.hands["player"]) == 4
        assert len(env.discard_pile) == 2
        assert env.deck.count() == 22
        assert len(set(all_cards(env))) == 40

        for pid in ["rival2", "partner", "rival1"]:
            assert env.handle_descarte(pid, [])

        assert env.fase == "mus"
        assert rec.payloads("descarteFinished")[0]["descartes"] == {
            "player": 2, "rival2": 0, "partner": 0, "rival1": 0}

    def test_reshuffle_when_deck_runs_short(self):
        env = MusEnvironment(seed=4)
        rec = Recorder(env)
        env.start_game()
        env.discard_pile.extend(env.deck.deal(env.deck.count() - 2))
        for _ in TURN_ORDER:
            env.handle_mus(env.get_current_player(), True)

        assert env.handle_descarte("player", [0, 1, 2])

        assert rec.payloads("deckReshuffled") == [{"cardsReturned": 22, "deckCount": 24}]
        assert env.deck.count() == 21
        assert env.discard_pile and len(env.discard_pile) == 3
        assert len(set(all_cards(env))) == 40
        assert env.stats["reshuffles"] == 1

    def test_invalid_discards(self):
        env = MusEnvironment(seed=4)
        rec = Recorder(env)
        env.start_game()
        for _ in TURN_ORDER:
            env.handle_mus(env.get_current_player(), True)

        for bad in ([4], [0, 0], [True], [-1], "01", [0, 1, 2, 3, 0]):
            assert env.handle_descarte("player", bad) is False

        errors = rec.payloads("error")
        assert len(errors) == 6
        assert all(e["tipo"] == "accion" for e in errors)
        assert env.get_current_player() == "player"
        assert len(set(all_cards(env))) == 40


class TestErrors:
    def test_before_start(self):
        env = MusEnvironment(seed=0)
        rec = Recorder(env)
        assert env.handle_mus("player", True) is False
        assert rec.payloads("error")[0]["tipo"] == "fase"

    def test_wrong_turn(self):
        env = MusEnvironment(seed=0)
        rec = Recorder(env)
        env.start_game()
        assert env.handle_mus("partner", True) is False
        error = rec.payloads("error")[0]
        assert error["tipo"] == "turno"
        assert error["expected"] == "player"
        assert error["received"] == "partner"
        assert env.stats["rejected_actions"] == 1

    def test_unknown_player(self):
        env = MusEnvironment(seed=0)
        rec = Recorder(env)
        env.start_game()
        assert env.handle_mus("dealer", True) is False
        assert rec.payloads("error")[0]["tipo"] == "jugador"

    def test_wrong_phase(self):
        env = MusEnvironment(seed=0)
        rec = Recorder(env)
        env.start_game()
        assert env.handle_envite("player", "paso") is False
        assert env.handle_descarte("player", []) is False
        assert [e["tipo"] for e in rec.payloads("error")] == ["fase", "fase"]

    def test_invalid_envite_actions(self):
        env = start_with_hands()
        rec = Recorder(env)
        cut(env)

        assert env.handle_envite("player", "truco") is False
        assert env.handle_envite("player", "quiero") is False
        assert env.handle_envite("player", "envido", 0) is False
        assert env.handle_envite("player", "envido", 2.5) is False
        assert all(e["tipo"] == "accion" for e in rec.payloads("error"))
        assert env.get_current_player() == "player"

    def test_rejected_actions_are_logged(self, caplog):
        env = MusEnvironment(seed=0)
        env.start_game()
        with caplog.at_level("WARNING", logger="mus_setup.mus_environment"):
            env.handle_mus("rival1", True)
        assert "Rejected action (turno)" in caplog.text

    def test_game_over_rejects_everything(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "ordago")
        env.handle_envite("rival2", "quiero")
        assert env.game_over
        assert env.handle_envite("rival1", "paso") is False
        assert env.get_current_player() is None
        assert env.get_valid_actions("rival1") == []


class TestEnvite:
    def test_opening_actions(self):
        env = start_with_hands()
        cut(env)
        assert env.get_valid_actions("player") == ["paso", "envido", "ordago"]
        assert env.get_valid_actions("rival2") == []

    def test_responder_queue(self):
        env = start_with_hands()
        rec = Recorder(env)
        cut(env)
        env.handle_envite("player", "envido", 2)

        assert env.envite.responder_queue == ["rival2", "rival1"]
        assert env.get_current_player() == "rival2"
        assert env.handle_envite("rival1", "quiero") is False
        assert rec.payloads("error")[0]["tipo"] == "turno"

        assert env.handle_envite("rival2", "paso")
        assert env.get_current_player() == "rival1"
        assert env.handle_envite("rival1", "paso")

        assert env.round_results[-1] == {"lance": "grande", "ganador": "equipo1", "puntos": 1}
        assert env.envite.lance == "chica"
        assert env.historial_lances[0]["respuestas"]["rival1"] == "no_quiero"

    def test_deje_is_one_regardless_of_bet(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "envido", 10)
        env.handle_envite("rival2", "no_quiero")
        assert env.round_results[-1] == {"lance": "grande", "ganador": "equipo1", "puntos": 1}
        assert env.puntos_pendientes == {"equipo1": 1, "equipo2": 0}

    def test_raise_then_accept(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "envido", 2)
        env.handle_envite("rival2", "envido", 2)

        assert env.envite.apuesta == 4
        assert env.envite.responder_queue == ["player", "partner"]
        assert env.get_valid_actions("player") == ["quiero", "no_quiero", "paso", "envido", "ordago"]

        env.handle_envite("player", "quiero")
        assert env.round_results[-1] == {"lance": "grande", "ganador": "equipo1", "puntos": 4}

    def test_rejected_raise_pays_raiser(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "envido", 2)
        env.handle_envite("rival2", "envido", 3)
        env.handle_envite("player", "no_quiero")
        assert env.round_results[-1] == {"lance": "grande", "ganador": "equipo2", "puntos": 1}

    def test_later_seat_can_open(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "paso")
        env.handle_envite("rival2", "envido", 2)
        assert env.envite.responder_queue == ["player", "partner"]
        env.handle_envite("player", "quiero")
        assert env.round_results[-1]["puntos"] == 2

    def test_decision_context(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "envido", 3)

        ctx = env.get_decision_context("rival2")
        assert ctx["posicion"] == "intermedio"
        assert ctx["apuesta_rival"] == 3
        assert ctx["equipo_rival"] == ["player", "partner"]
        assert ctx["piedras_restantes"] == 40
        assert ctx["ordago_activo"] is False
        assert env.get_decision_context("rival1")["posicion"] == "postre"
        assert env.get_decision_context("partner")["pareja_ya_envido"] is True


class TestResolution:
    def test_resolve_lance_winner(self):
        env = start_with_hands({
            "player": (12, 12, 12, 12),
            "rival2": (1, 1, 1, 1),
            "partner": (1, 1, 1, 1),
            "rival1": (1, 1, 1, 1),
        })
        assert env.resolve_lance_winner("grande") == "equipo1"
        assert env.resolve_lance_winner("chica") == "equipo2"

    def test_ties_go_to_mano(self):
        env = start_with_hands({pid: (12, 11, 7, 1) for pid in TURN_ORDER})
        assert env.resolve_lance_winner("grande") == "equipo1"
        env.mano_index = 1
        assert env.resolve_lance_winner("grande") == "equipo2"

    def test_all_pass_round(self):
        env = start_with_hands()
        rec = Recorder(env)
        cut(env)

        assert rec.payloads("paresDetectados") == []
        pass_lance(env)
        pass_lance(env)
        assert env.declaraciones_pares == {"player": "si", "rival2": "no", "partner": "no", "rival1": "no"}
        pass_lance(env)
        assert env.lance_actual == "juego"
        pass_lance(env)

        historial = env.round_history[0]["historial_lances"]
        assert [h["lance"] for h in historial] == ["grande", "chica", "pares", "juego"]
        assert historial[0]["respuestas"] == {
            "player": "paso", "rival2": "paso", "partner": "paso", "rival1": "paso"}
        assert all(h["apuesta_final"] == 0 for h in historial)
        assert env.historial_lances == []
        finished = rec.payloads("roundFinished")[0]
        assert finished["puntosPendientes"] == {"equipo1": 6, "equipo2": 0}
        assert finished["piedras"] == {"equipo1": 6, "equipo2": 0}

        results = env.round_history[0]["results"]
        assert [(r["lance"], r["ganador"], r["puntos"]) for r in results] == [
            ("grande", "equipo1", 1),
            ("chica", "equipo1", 1),
            ("pares", "equipo1", 1),
            ("juego", "equipo1", 3),
        ]
        assert all(r["razon"] == "paso" for r in results)
        assert env.round_history[0]["piedras_fin"] == {"equipo1": 6, "equipo2": 0}

        assert env.rounds_played == 2
        assert env.mano == "rival2"
        assert env.fase == "mus"

    def test_juego_other_than_31_pays_two(self):
        env = start_with_hands({
            "player": (12, 12, 11, 10),
            "rival2": (4, 5, 6, 7),
            "partner": (1, 4, 5, 6),
            "rival1": (10, 11, 4, 5),
        })
        cut(env)
        for _ in range(4):
            pass_lance(env)
        assert env.round_history[0]["results"][-1]["puntos"] == 2

    def test_pares_skipped_and_punto_played(self):
        env = start_with_hands({
            "player": (12, 4, 5, 1),
            "rival2": (4, 5, 6, 10),
            "partner": (1, 4, 5, 6),
            "rival1": (10, 11, 4, 5),
        })
        rec = Recorder(env)
        cut(env)
        pass_lance(env)
        pass_lance(env)

        assert rec.payloads("lanceSkipped") == [{"lance": "pares", "razon": "Nadie tiene pares"}]
        assert rec.payloads("juegoDetectado")[0]["lanceResultante"] == "punto"
        assert env.lance_actual == "punto"

        pass_lance(env)
        last = env.round_history[0]["results"][-1]
        # rival1 holds 29, the best punto at the table.
        assert (last["lance"], last["ganador"], last["puntos"]) == ("punto", "equipo2", 1)
        assert env.stats["lances_skipped"] == 1

    def test_team_pares_points_on_pass(self):
        env = start_with_hands({
            "player": (12, 12, 12, 1),
            "rival2": (4, 5, 6, 10),
            "partner": (4, 4, 5, 5),
            "rival1": (7, 7, 4, 5),
        })
        cut(env)
        pass_lance(env)
        pass_lance(env)
        pass_lance(env)
        assert env.round_results[-1] == {"lance": "pares", "ganador": "equipo1", "puntos": 5}

    def test_points_stop_at_first_team_to_forty(self):
        env = start_with_hands({
            "player": (12, 12, 11, 1),
            "rival2": (1, 2, 4, 5),
            "partner": (1, 4, 5, 6),
            "rival1": (10, 11, 4, 5),
        })
        rec = Recorder(env)
        env.piedras = {"equipo1": 39, "equipo2": 39}
        cut(env)
        for _ in range(4):
            pass_lance(env)

        assert env.round_history[0]["results"][1]["ganador"] == "equipo2"
        assert env.game_over
        assert env.winner == "equipo1"
        assert env.piedras == {"equipo1": 40, "equipo2": 39}
        assert rec.payloads("gameOver") == [{"ganador": "equipo1", "piedras": {"equipo1": 40, "equipo2": 39}}]


class TestOrdago:
    def test_accepted_ordago_ends_game(self):
        env = start_with_hands()
        rec = Recorder(env)
        cut(env)

        assert env.handle_envite("player", "ordago")
        assert env.envite.apuesta == 40
        assert env.get_valid_actions("rival2") == ["quiero", "no_quiero", "paso"]
        assert env.get_decision_context("rival2")["ordago_activo"] is True
        assert env.handle_envite("rival2", "envido", 2) is False

        assert env.handle_envite("rival2", "quiero")
        assert env.game_over
        assert env.ended_by_ordago
        assert env.winner == "equipo1"
        assert env.piedras["equipo1"] == 40
        assert rec.payloads("lanceResolved")[-1]["ordago"] is True
        assert rec.payloads("gameOver")[0]["ordago"] is True
        assert env.stats["ordagos_accepted"] == 1

    def test_ordago_can_be_lost_by_caller(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "paso")
        env.handle_envite("rival2", "ordago")
        env.handle_envite("player", "quiero")
        assert env.winner == "equipo1"

    def test_ordago_amount_uses_remaining_piedras(self):
        env = start_with_hands()
        env.piedras = {"equipo1": 25, "equipo2": 10}
        cut(env)
        env.handle_envite("player", "envido", 20)
        env.handle_envite("rival2", "ordago")
        assert env.envite.apuesta == 30

    def test_rejected_ordago_pays_one(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "ordago")
        env.handle_envite("rival2", "no_quiero")
        assert not env.game_over
        assert env.round_results[-1] == {"lance": "grande", "ganador": "equipo1", "puntos": 1}
        assert env.lance_actual == "chica"

    def test_ordago_passed_by_both_rivals(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "ordago")
        env.handle_envite("rival2", "paso")
        env.handle_envite("rival1", "paso")
        assert not env.game_over
        assert env.historial_lances[0]["respuestas"]["rival1"] == "no_quiero"
        assert env.round_results[-1]["puntos"] == 1


class TestState:
    def test_partial_state_hides_other_hands(self):
        env = start_with_hands()
        state = env.get_state("player")
        assert state["players"]["player"]["hand"] == [str(c) for c in env.hands["player"]]
        assert state["players"]["rival1"]["hand"] == ["[Hidden]"] * 4
        assert state["current_player"] == "player"
        assert state["deck_count"] == 24

    def test_full_state(self):
        env = start_with_hands()
        cut(env)
        env.handle_envite("player", "envido", 2)
        state = env.get_state()
        assert state["fase"] == "envite"
        assert state["lance"] == "grande"
        assert state["envite"]["responder_queue"] == ["rival2", "rival1"]
        assert "[Hidden]" not in state["players"]["rival1"]["hand"]

    def test_envite_state_dict(self):
        envite = EnviteState("pares")
        assert envite.to_dict()["lance"] == "pares"
        assert envite.to_dict()["apuesta"] == 0


class TestSelfPlay:
    def test_heuristic_game_completes(self):
        env = MusEnvironment(seed=11)
        agents = {pid: HeuristicAgent(seed=i) for i, pid in enumerate(TURN_ORDER)}
        result = env.play_full_game(agents)

        assert result["completed"]
        assert result["winner"] in ("equipo1", "equipo2")
        assert result["piedras"][result["winner"]] == 40
        assert result["rounds_played"] >= 1
        assert result["statistics"]["rejected_actions"] == 0

    def test_random_agents_as_sequence(self):
        env = MusEnvironment(seed=12)
        result = env.play_full_game([RandomAgent(seed=i) for i in range(4)])
        assert result["completed"]
        assert all(0 <= p <= 40 for p in result["piedras"].values())

    def test_self_play_is_reproducible(self):
        def play():
            env = MusEnvironment(seed=21)
            return env.play_full_game([HeuristicAgent(seed=i) for i in range(4)])

        a, b = play(), play()
        assert a["winner"] == b["winner"]
        assert a["piedras"] == b["piedras"]
        assert a["rounds_played"] == b["rounds_played"]

    def test_round_history_consistency(self):
        env = MusEnvironment(seed=13)
        env.play_full_game([HeuristicAgent(seed=i) for i in range(4)])

        previous = {"equipo1": 0, "equipo2": 0}
        for record in env.round_history:
            assert record["piedras_inicio"] == previous
            assert set(record["hands"]) == set(TURN_ORDER)
            assert [h["lance"] for h in record["historial_lances"]] == [r["lance"] for r in record["results"]]
            for team in ("equipo1", "equipo2"):
                assert record["piedras_fin"][team] >= record["piedras_inicio"][team]
            previous = record["piedras_fin"]

    def test_step_limit(self):
        env = MusEnvironment(seed=14)
        result = env.play_full_game([RandomAgent(seed=i) for i in range(4)], max_steps=3)
        assert result["completed"] is False
        assert result["winner"] is None

    def test_bad_agent_decisions_are_coerced(self):
        agent = MagicMock()
        agent.decide_mus.return_value = False
        agent.select_discard.return_value = []
        agent.decide_envite.return_value = {"action": "quiero"}

        env = MusEnvironment(seed=15)
        result = env.play_full_game([agent] * 4, max_steps=500)
        assert result["statistics"]["rejected_actions"] == 0
        assert result["rounds_played"] > 1
