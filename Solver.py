"""Depth-first solver for a dealt Shenzhen-style solitaire board."""
import argparse
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Set

from DataModel import (
    Board,
    Collection,
    MalformedDeal,
    Move,
    N_COLUMNS,
    StackingRule,
    Undo,
    cell_site,
    column_site,
    random_deal,
    site_order,
)
from Features import HeuristicParams, rank_moves

LOGGER = logging.getLogger("Solver")

EXIT_SOLVED = 0
EXIT_EXHAUSTED = 1
EXIT_ABORTED = 2
EXIT_BAD_INPUT = 3


class SearchOutcome(Enum):
    SOLVED = "solved"
    EXHAUSTED = "exhausted"   # every reachable state visited, none solved
    ABORTED = "aborted"       # budget ran out; solvability unknown


@dataclass
class SolveResult:
    outcome: SearchOutcome
    moves: List[Move] = field(default_factory=list)
    nodes: int = 0
    elapsed: float = 0.0

    @property
    def solved(self) -> bool:
        return self.outcome == SearchOutcome.SOLVED


@dataclass
class SolverConfig:
    """Search budget and move-ordering settings."""
    max_nodes: Optional[int] = None      # distinct states visited before giving up
    timeout: Optional[float] = None      # seconds
    stacking_rule: str = StackingRule.LITERAL.value
    order_moves: bool = True
    progress_every: int = 100000         # log a progress line every N states
    heuristic: HeuristicParams = field(default_factory=HeuristicParams)

    def __post_init__(self):
        if isinstance(self.heuristic, dict):
            self.heuristic = HeuristicParams.from_dict(self.heuristic)
        if self.max_nodes is not None and self.max_nodes < 1:
            raise ValueError("max_nodes must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.progress_every < 1:
            raise ValueError("progress_every must be at least 1")
        # raises ValueError for unknown rule names
        self.stacking_rule = StackingRule(self.stacking_rule).value

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'SolverConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown solver settings: {sorted(unknown)}")
        return cls(**data)

    def save(self, filename) -> None:
        with open(filename, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filename) -> 'SolverConfig':
        with open(filename, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class _Frame:
    """One state on the search path: how it was entered and what is left to try from it."""
    __slots__ = ("record", "collected", "candidates")

    def __init__(self, collected: List[Collection], candidates: Iterator[Move]):
        self.record: Optional[Undo] = None
        self.collected = collected
        self.candidates = candidates


class Solver:
    def __init__(self, board: Board, config: Optional[SolverConfig] = None):
        self.board = board
        self.config = config or SolverConfig()
        self.nodes_explored = 0

    def solve(self) -> SolveResult:
        """Search from the current board. The board is back in its starting state afterwards."""
        cfg = self.config
        board = self.board
        start_time = time.time()
        visited: Set[str] = set()
        path: List[Move] = []
        frames: List[_Frame] = []
        self.nodes_explored = 0
        LOGGER.info("searching from %s", board.fingerprint())

        outcome = SearchOutcome.EXHAUSTED
        solved, root = self._enter(visited)
        if root is not None:
            frames.append(root)

        while frames and not solved:
            frame = frames[-1]
            move = next(frame.candidates, None)
            if move is None:
                frames.pop()
                board.revert(frame.collected)
                if frame.record is not None:
                    board.undo(frame.record)
                    path.pop()
                continue

            record = board.apply(move.src, move.dst)
            path.append(move)
            # the budget only counts states not seen yet
            if board.fingerprint() not in visited and self._out_of_budget(start_time):
                board.undo(record)
                path.pop()
                outcome = SearchOutcome.ABORTED
                break
            solved, child = self._enter(visited)
            if child is None:
                board.undo(record)
                path.pop()
                continue
            child.record = record
            frames.append(child)
            if self.nodes_explored % cfg.progress_every == 0:
                LOGGER.debug("nodes=%d, depth=%d, visited=%d", self.nodes_explored, len(path), len(visited))

        if solved:
            outcome = SearchOutcome.SOLVED
        moves = list(path) if solved else []

        # unwind whatever is left on the path
        for frame in reversed(frames):
            board.revert(frame.collected)
            if frame.record is not None:
                board.undo(frame.record)

        elapsed = time.time() - start_time
        LOGGER.info("%s after %d states in %.2fs (%d moves)",
                    outcome.value, self.nodes_explored, elapsed, len(moves))
        return SolveResult(outcome, moves, self.nodes_explored, elapsed)

    def _out_of_budget(self, start_time: float) -> bool:
        cfg = self.config
        if cfg.max_nodes is not None and self.nodes_explored >= cfg.max_nodes:
            LOGGER.info("node budget of %d reached", cfg.max_nodes)
            return True
        if cfg.timeout is not None and time.time() - start_time > cfg.timeout:
            LOGGER.info("timed out after %.1fs", cfg.timeout)
            return True
        return False

    def _enter(self, visited: Set[str]):
        """Visit the current board: (solved, frame), frame is None when the state was seen before."""
        board = self.board
        key = board.fingerprint()
        if key in visited:
            return False, None
        visited.add(key)
        self.nodes_explored += 1
        if board.is_solved():
            return True, _Frame([], iter(()))

        collected = board.auto_collect()
        if collected:
            if board.is_solved():
                return True, _Frame(collected, iter(()))
            key = board.fingerprint()
            if key in visited:
                board.revert(collected)
                return False, None
            visited.add(key)
        return False, _Frame(collected, iter(self._candidates()))

    def _candidates(self) -> List[Move]:
        board = self.board
        moves: List[Move] = []
        for idx in range(N_COLUMNS):
            for pos in board.run_starts(idx):
                src = column_site(idx, pos)
                for dst in sorted(board.legal_destinations(src), key=site_order):
                    moves.append(Move(src, dst))
        for idx, held in enumerate(board.cells):
            if not held.playable:
                continue
            src = cell_site(idx)
            for dst in sorted(board.legal_destinations(src), key=site_order):
                moves.append(Move(src, dst))
        if self.config.order_moves:
            moves = rank_moves(board, moves, self.config.heuristic)
        return moves


def replay_solution(board: Board, moves: List[Move]) -> Board:
    """Play *moves* on a copy of *board*, with the same forced collections as the search."""
    curr = board.copy()
    curr.auto_collect()
    for step_num, move in enumerate(moves, 1):
        curr.apply(move.src, move.dst)
        curr.auto_collect()
        LOGGER.debug("step %d: %s\n%s", step_num, move, curr.format_status())
    return curr


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--deal", help="80-character deal string (40 two-character cards)")
    source.add_argument("--seed", type=int, help="Solve a random deal shuffled with this seed.")
    parser.add_argument("--config", type=Path, help="JSON file with solver settings.")
    parser.add_argument("--max-nodes", type=int, help="Give up after visiting this many states.")
    parser.add_argument("--timeout", type=float, help="Give up after this many seconds.")
    parser.add_argument(
        "--rule",
        choices=[rule.value for rule in StackingRule],
        help="Stacking rule between numbered cards (default: literal).",
    )
    parser.add_argument("--no-ordering", action="store_true", help="Try moves in generation order.")
    parser.add_argument("--replay", action="store_true", help="Print the board after replaying the solution.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = SolverConfig.load(args.config) if args.config else SolverConfig()
        overrides = config.to_dict()
        if args.max_nodes is not None:
            overrides["max_nodes"] = args.max_nodes
        if args.timeout is not None:
            overrides["timeout"] = args.timeout
        if args.rule is not None:
            overrides["stacking_rule"] = args.rule
        if args.no_ordering:
            overrides["order_moves"] = False
        config = SolverConfig.from_dict(overrides)
    except (OSError, ValueError, TypeError) as exc:
        LOGGER.error("invalid configuration: %s", exc)
        return EXIT_BAD_INPUT

    deal = args.deal if args.deal is not None else random_deal(args.seed)
    try:
        board = Board.from_deal(deal, rule=StackingRule(config.stacking_rule))
    except MalformedDeal as exc:
        LOGGER.error("malformed deal: %s", exc)
        return EXIT_BAD_INPUT

    print(f"Deal: {deal}")
    print(board.format_status())
    result = Solver(board, config).solve()

    if result.solved:
        print(f"Solved in {len(result.moves)} moves ({result.nodes} states, {result.elapsed:.2f}s)")
        for step_num, move in enumerate(result.moves, 1):
            print(f"{step_num:4}: {move}")
        if args.replay:
            print(replay_solution(board, result.moves).format_status())
        return EXIT_SOLVED
    if result.outcome == SearchOutcome.EXHAUSTED:
        print(f"No solution: all {result.nodes} reachable states explored")
        return EXIT_EXHAUSTED
    print(f"Search aborted after {result.nodes} states: solvability unknown")
    return EXIT_ABORTED


if __name__ == "__main__":
    sys.exit(main())
