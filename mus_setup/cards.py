from collections import Counter
from typing import Dict, Iterable, List, Optional
import random

SUITS = ["oros", "copas", "espadas", "bastos"]

VALUES = [1, 2, 3, 4, 5, 6, 7, 10, 11, 12]

# 3 plays as a Rey and 2 as an As everywhere cards are compared.
COMPARISON_VALUE_OVERRIDES = {
    3: 12,
    2: 1,
}

# Position of each comparison value from As (1) to Rey (8).
COMPARISON_ORDINALS = {
    1: 1,
    4: 2,
    5: 3,
    6: 4,
    7: 5,
    10: 6,
    11: 7,
    12: 8,
}

CARD_NAMES = {
    1: "As",
    2: "Dos",
    3: "Tres",
    4: "Cuatro",
    5: "Cinco",
    6: "Seis",
    7: "Siete",
    10: "Sota",
    11: "Caballo",
    12: "Rey",
}


class InsufficientCards(ValueError):
    pass


def _check_value(value: int) -> None:
    if value not in VALUES:
        raise ValueError(f"Invalid Mus card value: {value}")


def get_card_comparison_value(value: int) -> int:
    _check_value(value)
    return COMPARISON_VALUE_OVERRIDES.get(value, value)


def get_card_point_value(value: int) -> int:
    _check_value(value)
    if value >= 10 or value == 3:
        return 10
    if value == 2:
        return 1
    return value


def get_card_ordinal(value: int) -> int:
    return COMPARISON_ORDINALS[get_card_comparison_value(value)]


class Card:
    """A Spanish-deck card.

    ``<`` and ``>`` compare playing strength only, while equality is by value
    and suit, so the order is partial: a 3 and a Rey are neither smaller,
    greater nor equal.
    """

    __slots__ = ['value', 'suit']

    def __init__(self, value: int, suit: str):
        if suit not in SUITS:
            raise ValueError(f"Unrecognized suit: {suit}")
        _check_value(value)
        self.value = value
        self.suit = suit

    @property
    def comparison_value(self) -> int:
        return get_card_comparison_value(self.value)

    @property
    def point_value(self) -> int:
        return get_card_point_value(self.value)

    @property
    def ordinal(self) -> int:
        return get_card_ordinal(self.value)

    @property
    def name(self) -> str:
        return f"{CARD_NAMES[self.value]} de {self.suit}"

    def __str__(self) -> str:
        return f"{self.value} de {self.suit}"

    def __repr__(self) -> str:
        return f"Card(value={self.value}, suit='{self.suit}')"

    def __lt__(self, other) -> bool:
        return self.comparison_value < other.comparison_value

    def __gt__(self, other) -> bool:
        return self.comparison_value > other.comparison_value

    def __eq__(self, other) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.value == other.value and self.suit == other.suit

    def __hash__(self) -> int:
        return hash((self.value, self.suit))


class Deck:

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._random = random.Random(seed)
        self.cards: List[Card] = []
        self.reset()

    def _build_deck(self) -> List[Card]:
        return [Card(val, suit) for suit in SUITS for val in VALUES]

    def shuffle(self) -> None:
        self._random.shuffle(self.cards)

    def deal(self, n: int = 1) -> List[Card]:
        if n > len(self.cards):
            raise InsufficientCards(f"Cannot deal {n} cards; only {len(self.cards)} remain.")
        dealt = self.cards[:n]
        self.cards = self.cards[n:]
        return dealt

    def return_cards(self, cards: Iterable[Card]) -> None:
        self.cards.extend(cards)

    def reset(self) -> None:
        self._random = random.Random(self.seed)
        self.cards = self._build_deck()
        self.shuffle()

    def count(self) -> int:
        return len(self.cards)


class Hand:
    """Four cards held by one seat, with the derived views used by every lance."""

    def __init__(self, cards: Optional[Iterable[Card]] = None):
        self.cards: List[Card] = list(cards) if cards is not None else []

    def grande_values(self) -> List[int]:
        return sorted((c.comparison_value for c in self.cards), reverse=True)

    def chica_values(self) -> List[int]:
        return sorted(c.comparison_value for c in self.cards)

    def pair_groups(self) -> Dict[int, int]:
        return dict(Counter(c.comparison_value for c in self.cards))

    def point_sum(self) -> int:
        return sum(c.point_value for c in self.cards)

    def discard(self, indices: Iterable[int]) -> List[Card]:
        # Highest index first so earlier positions stay valid.
        removed = []
        for idx in sorted(set(indices), reverse=True):
            removed.append(self.cards.pop(idx))
        removed.reverse()
        return removed

    def receive(self, cards: Iterable[Card]) -> None:
        self.cards.extend(cards)

    def __len__(self) -> int:
        return len(self.cards)

    def __iter__(self):
        return iter(self.cards)

    def __getitem__(self, idx):
        return self.cards[idx]

    def __str__(self) -> str:
        return ", ".join(str(c) for c in self.cards)

    def __repr__(self) -> str:
        return f"Hand({self.cards!r})"
