import argparse
import logging
import random
from typing import Any, Dict, Optional, Type

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from mus_setup.mus_environment import MusEnvironment
from mus_setup.basic_agents import HeuristicAgent, RandomAgent
from mus_setup.rules import TEAMS, TURN_ORDER

logger = logging.getLogger(__name__)

try:
    plt.style.use('seaborn-v0_8-darkgrid')
except OSError:
    plt.style.use('seaborn-darkgrid')

AGENT_TYPES = {
    "heuristic": HeuristicAgent,
    "random": RandomAgent,
}


def _build_agents(team1_cls: Type, team2_cls: Type, rng: random.Random) -> Dict[str, Any]:
    agents = {}
    for pid in TURN_ORDER:
        cls = team1_cls if TEAMS[pid] == "equipo1" else team2_cls
        agents[pid] = cls(seed=rng.randrange(2 ** 32))
    return agents


def run_tournament(team1_cls: Type, team2_cls: Type, num_games: int,
                   seed: int = 0, max_steps: int = 20000) -> pd.DataFrame:
    """Play ``num_games`` full games and return one row per game."""
    rng = random.Random(seed)
    rows = []

    for game_idx in range(num_games):
        game_seed = rng.randrange(2 ** 32)
        env = MusEnvironment(seed=game_seed)
        result = env.play_full_game(_build_agents(team1_cls, team2_cls, rng), max_steps=max_steps)

        piedras = result["piedras"]
        rows.append({
            "game": game_idx,
            "seed": game_seed,
            "agent_equipo1": team1_cls.__name__,
            "agent_equipo2": team2_cls.__name__,
            "winner": result["winner"],
            "piedras_equipo1": piedras["equipo1"],
            "piedras_equipo2": piedras["equipo2"],
            "margin": piedras["equipo1"] - piedras["equipo2"],
            "rounds_played": result["rounds_played"],
            "completed": result["completed"],
            "ordago": result["ordago"],
        })

        logger.debug(f"Game {game_idx}: winner={result['winner']} piedras={piedras} "
                     f"rounds={result['rounds_played']}")

    return pd.DataFrame(rows)


def summarize_results(df: pd.DataFrame) -> Dict[str, Any]:
    n_games = len(df)
    if n_games == 0:
        return {"games": 0}

    wins1 = int((df["winner"] == "equipo1").sum())
    wins2 = int((df["winner"] == "equipo2").sum())
    rounds = df["rounds_played"].to_numpy(dtype=float)
    win_rate1 = wins1 / n_games

    return {
        "games": n_games,
        "equipo1_wins": wins1,
        "equipo2_wins": wins2,
        "equipo1_win_rate": win_rate1,
        "equipo1_win_rate_ci95": 1.96 * np.sqrt(win_rate1 * (1 - win_rate1) / n_games),
        "mean_rounds": float(np.mean(rounds)),
        "std_rounds": float(np.std(rounds)),
        "median_rounds": float(np.median(rounds)),
        "mean_margin": float(np.mean(df["margin"].to_numpy(dtype=float))),
        "ordago_rate": float(np.mean(df["ordago"].to_numpy(dtype=float))),
        "completion_rate": float(np.mean(df["completed"].to_numpy(dtype=float))),
    }


def plot_results(df: pd.DataFrame, output_path: Optional[str] = None):
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    teams = ["equipo1", "equipo2"]
    wins = [int((df["winner"] == t).sum()) for t in teams]
    labels = [f"{t}\n({df[f'agent_{t}'].iloc[0]})" if len(df) else t for t in teams]
    axes[0].bar(labels, wins, color=["tab:blue", "tab:red"])
    axes[0].set_title("Games won")
    axes[0].set_ylabel("Wins")

    axes[1].hist(df["rounds_played"], bins=20, color="tab:green", alpha=0.8)
    axes[1].set_title("Game length")
    axes[1].set_xlabel("Rounds played")
    axes[1].set_ylabel("Games")

    fig.tight_layout()

    if output_path:
        fig.savefig(output_path)
        plt.close(fig)
    else:
        plt.show()

    return fig


def main(argv=None):
    p = argparse.ArgumentParser(description="Run a Mus tournament between two agent types")
    p.add_argument("--games", type=int, default=200, help="Number of full games")
    p.add_argument("--team1", choices=sorted(AGENT_TYPES), default="heuristic", help="Agent for equipo1")
    p.add_argument("--team2", choices=sorted(AGENT_TYPES), default="random", help="Agent for equipo2")
    p.add_argument("--seed", type=int, default=42, help="Global RNG seed")
    p.add_argument("--output", type=str, default=None, help="Optional CSV path for per-game results")
    p.add_argument("--plot", type=str, default=None, help="Optional image path for the summary plot")
    p.add_argument("--verbose", action="store_true", help="Log every game")
    args = p.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    df = run_tournament(AGENT_TYPES[args.team1], AGENT_TYPES[args.team2], args.games, seed=args.seed)
    summary = summarize_results(df)

    print(f"=== {args.team1} (equipo1) vs {args.team2} (equipo2), {args.games} games ===")
    for key, value in summary.items():
        print(f"{key}: {value}")

    if args.output:
        df.to_csv(args.output, index=False)
        print(f"Saved {len(df):,} rows to {args.output}")

    if args.plot:
        plot_results(df, args.plot)
        print(f"Plot saved to {args.plot}")

    return summary


if __name__ == "__main__":
    main()
