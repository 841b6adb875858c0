from __future__ import annotations

import argparse
import logging
import random
from itertools import product
from typing import Dict, List, Type

import pandas as pd

from mus_setup.cards import SUITS, VALUES, Card
from mus_setup.mus_environment import MusEnvironment
from mus_setup.basic_agents import RandomAgent, HeuristicAgent
from mus_setup.rules import TEAMS, TURN_ORDER, all_lances, get_other_team
from mus_setup.utils import (
    compute_juego_points,
    detect_pares,
    evaluate_hand_overall,
    evaluate_lance_strength,
    has_juego,
)

logger = logging.getLogger(__name__)

all_cards: List[Card] = [Card(v, s) for s in SUITS for v in VALUES]
total_cards: int = len(all_cards)
card_rank: Dict[str, int] = {str(c): c.ordinal for c in all_cards}

_ordinal_to_cards: Dict[int, List[str]] = {}
for card_str, ordinal in card_rank.items():
    _ordinal_to_cards.setdefault(ordinal, []).append(card_str)

# Grande view: how many cards beat or tie each card once 3s count as Reyes and 2s as Ases.
tie_probability: Dict[str, float] = {}
stronger_count: Dict[str, int] = {}
for ordinal, group in _ordinal_to_cards.items():
    stronger_cards = [c for o, g in _ordinal_to_cards.items() if o > ordinal for c in g]
    for c in group:
        tie_probability[c] = (len(group) - 1) / (total_cards - 1)
        stronger_count[c] = len(stronger_cards)


def _position(player_id: str, mano_id: str) -> int:
    """Seats after mano: 0 is mano, 3 is postre."""
    return (TURN_ORDER.index(player_id) - TURN_ORDER.index(mano_id)) % 4


def _hand_features(cards: List[Card]) -> dict:
    pares = detect_pares(cards)
    features = {
        "pares_tipo": pares["tipo"] or "none",
        "pares_puntos": pares["puntos"],
        "juego_points": compute_juego_points(cards),
        "has_juego": int(has_juego(cards)),
        "overall_strength": evaluate_hand_overall(cards),
    }
    for lance in all_lances:
        features[f"{lance}_strength"] = evaluate_lance_strength(cards, lance)
    return features


def _play_game_and_collect(team1_cls: Type, team2_cls: Type, seed: int) -> List[dict]:
    env = MusEnvironment(seed=seed)
    agent_seed = random.Random(seed)
    agents = {}
    for pid in TURN_ORDER:
        cls = team1_cls if TEAMS[pid] == "equipo1" else team2_cls
        agents[pid] = cls(seed=agent_seed.randrange(2 ** 32))

    agent_names = {"equipo1": team1_cls.__name__, "equipo2": team2_cls.__name__}
    result = env.play_full_game(agents)

    rows: List[dict] = []
    for record in env.round_history:
        if not record["hands"]:
            continue

        start = record["piedras_inicio"]
        end = record.get("piedras_fin", start)
        mano_id = record["mano"]

        for pid in TURN_ORDER:
            team = TEAMS[pid]
            rival = get_other_team(team)
            cards = record["hands"][pid]
            position = _position(pid, mano_id)

            row: dict = {
                "game_seed": seed,
                "round_number": record["round"],
                "player_id": pid,
                "team": team,
                "agent_team": agent_names[team],
                "agent_rival": agent_names[rival],
                "mano_id": mano_id,
                "position": position,
                "is_mano": int(position == 0),
                "is_postre": int(position == 3),
                "starting_score_team": start[team],
                "starting_score_rival": start[rival],
            }

            for i, card in enumerate(cards, start=1):
                row[f"card{i}_str"] = str(card)
                row[f"card{i}_rank"] = card_rank[str(card)]
                row[f"stronger_count_card{i}"] = stronger_count[str(card)]
                row[f"tie_probability_card{i}"] = tie_probability[str(card)]

            row.update(_hand_features(cards))

            gained = end[team] - start[team]
            rival_gained = end[rival] - start[rival]
            row["points_gained"] = gained
            row["won_round"] = int(gained > rival_gained)
            row["lances_won"] = sum(1 for r in record["results"] if r["ganador"] == team)
            row["game_completed"] = int(result["completed"])
            rows.append(row)

    return rows


def generate_dataset(num_games_per_matchup: int, output_csv: str, seed: int = 0) -> pd.DataFrame:
    rng = random.Random(seed)
    all_rows: List[dict] = []

    agent_classes = [RandomAgent, HeuristicAgent]

    for cls_a, cls_b in product(agent_classes, repeat=2):
        logger.info(f"Playing {num_games_per_matchup} games: {cls_a.__name__} vs {cls_b.__name__}")
        for _ in range(num_games_per_matchup):
            game_seed = rng.randrange(2 ** 32)
            all_rows.extend(_play_game_and_collect(cls_a, cls_b, game_seed))

    df = pd.DataFrame(all_rows)
    df.to_csv(output_csv, index=False)
    print(f"Saved {len(df):,} rows to {output_csv}")
    return df


if __name__ == "__main__":
    p = argparse.ArgumentParser(description="Generate Mus round-level dataset for hand evaluation")
    p.add_argument("--num_games", type=int, default=500, help="Full games *per* agent matchup (default 500)")
    p.add_argument("--output", type=str, default="mus_training_data.csv", help="CSV output path")
    p.add_argument("--seed", type=int, default=42, help="Global RNG seed")
    p.add_argument("--verbose", action="store_true", help="Log progress per matchup")
    args = p.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    generate_dataset(args.num_games, args.output, args.seed)
