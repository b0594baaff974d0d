"""Board features and move ordering for the depth-first solver.

The solver tries candidate moves best-first: each move is applied, the
forced collections are run, the resulting board is turned into a feature
vector and scored against the heuristic weights, then everything is
reverted. Ordering only changes how soon a solution is found, never
whether an exhaustive search finds one.
"""
from dataclasses import asdict, dataclass, fields
from typing import Dict, List, Sequence

import numpy as np

from DataModel import (
    Board,
    CardType,
    GROUP_SIZE,
    MAX_RANK,
    Move,
    N_CELLS,
    N_COLUMNS,
    N_SUITS,
    PLACEHOLDER,
)

# deepest a card can sit: five dealt cards plus a full run on top
MAX_DEPTH = 13


@dataclass
class HeuristicParams:
    """Move-ordering weights, one per feature of FeatureExtractor.extract."""
    collected_weight: float = 10.0       # numbered cards on the foundations
    bonus_weight: float = 4.0            # bonus card collected
    locked_weight: float = 8.0           # special groups locked away
    free_cell_weight: float = 3.0        # empty cells
    empty_column_weight: float = 4.0     # empty columns
    run_weight: float = 1.0              # cards movable as part of a run
    depth_weight: float = -6.0           # cards covering the next card of each suit
    exposed_special_weight: float = 2.0  # progress towards a full special group

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict) -> 'HeuristicParams':
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"unknown heuristic weights: {sorted(unknown)}")
        return cls(**{k: float(v) for k, v in d.items()})

    def as_vector(self) -> np.ndarray:
        return np.array([getattr(self, f.name) for f in fields(self)], dtype=np.float32)


class FeatureExtractor:

    @staticmethod
    def column_heights(board: Board) -> np.ndarray:
        return np.array([len(column) - 1 for column in board.columns], dtype=np.int32)

    @staticmethod
    def next_card_depths(board: Board) -> np.ndarray:
        """Cards lying above the next collectible card of each suit (0 in a cell or when done)."""
        depths = np.zeros(N_SUITS, dtype=np.int32)
        for suit in range(N_SUITS):
            need = board.foundations[suit] + 1
            if need > MAX_RANK:
                continue
            for column in board.columns:
                found = False
                for d, card in enumerate(reversed(column)):
                    if card.type == CardType.NUMBER and card.suit == suit and card.rank == need:
                        depths[suit] = d
                        found = True
                        break
                if found:
                    break
        return depths

    @staticmethod
    def extract(board: Board) -> np.ndarray:
        """
        One value per HeuristicParams field, each scaled to roughly 0..1:
        - collection progress: numbered, bonus, special groups
        - free space: cells, columns
        - mobility: run lengths, depth of the next needed cards, exposed specials
        """
        heights = FeatureExtractor.column_heights(board)
        runs = sum(len(board.run_starts(i)) for i in range(N_COLUMNS))

        exposed = np.zeros(N_SUITS, dtype=np.int32)
        for site in board.exposed_sites():
            card = board.card_at(site)
            if card.type == CardType.SPECIAL:
                exposed[card.kind] += 1

        features = [
            sum(board.foundations) / (N_SUITS * MAX_RANK),
            1.0 if board.bonus_collected else 0.0,
            len(board.locked_kinds) / N_SUITS,
            sum(1 for card in board.cells if card == PLACEHOLDER) / N_CELLS,
            np.count_nonzero(heights == 0) / N_COLUMNS,
            runs / 40.0,
            FeatureExtractor.next_card_depths(board).sum() / (N_SUITS * MAX_DEPTH),
            exposed.max() / GROUP_SIZE,
        ]
        return np.array(features, dtype=np.float32)


def score_board(board: Board, params: HeuristicParams) -> float:
    return float(np.dot(FeatureExtractor.extract(board), params.as_vector()))


def rank_moves(board: Board, candidates: Sequence[Move], params: HeuristicParams) -> List[Move]:
    """Return *candidates* best first; ties keep their input order. The board is left unchanged."""
    if len(candidates) < 2:
        return list(candidates)
    scores = np.empty(len(candidates), dtype=np.float32)
    for i, move in enumerate(candidates):
        record = board.apply(move.src, move.dst)
        collected = board.auto_collect()
        scores[i] = score_board(board, params)
        board.revert(collected)
        board.undo(record)
    order = np.argsort(-scores, kind="stable")
    return [candidates[i] for i in order]
