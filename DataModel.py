import random
from collections import Counter, namedtuple
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

N_COLUMNS = 8
N_CELLS = 3
N_SUITS = 3
MAX_RANK = 9
GROUP_SIZE = 4
DEAL_LENGTH = 80
CARDS_PER_COLUMN = 5

SUIT_CODES = "rgb"
SPECIAL_CODES = "zfm"
BONUS_CODE = "l"


class CardType(Enum):
    NUMBER = 0
    SPECIAL = 1
    BONUS = 2
    PLACEHOLDER = 3
    LOCKED = 4


class Area(Enum):
    COLUMN = 0
    CELL = 1


class StackingRule(Enum):
    LITERAL = "literal"
    DESCENDING = "descending"


class IllegalMove(ValueError):
    """Raised when a requested move or inverse operation does not fit the board."""


class MalformedDeal(ValueError):
    """Raised when a deal string does not decode to the 40-card deck."""


class Card:
    """
        Cards are stored as one small integer:
        0 ~ 26 are numbered cards, value // 9 is the suit and value % 9 + 1 the rank
        27 ~ 29 are special cards, value - 27 is the kind; the four copies of a kind are equal
        30 is the bonus card
        31 is the placeholder (bottom of every column, empty cell)
        32 is the locked marker left in a cell by a collected special group
    """
    __slots__ = ("value",)

    def __init__(self, value: int):
        if not 0 <= value <= 32:
            raise ValueError(f"card value out of range: {value}")
        self.value = value

    @classmethod
    def number(cls, suit: int, rank: int) -> "Card":
        if not 0 <= suit < N_SUITS or not 1 <= rank <= MAX_RANK:
            raise ValueError(f"no numbered card with suit {suit} and rank {rank}")
        return cls(suit * MAX_RANK + rank - 1)

    @classmethod
    def special(cls, kind: int) -> "Card":
        if not 0 <= kind < N_SUITS:
            raise ValueError(f"no special kind {kind}")
        return cls(27 + kind)

    @property
    def type(self) -> CardType:
        if self.value < 27:
            return CardType.NUMBER
        if self.value < 30:
            return CardType.SPECIAL
        if self.value == 30:
            return CardType.BONUS
        if self.value == 31:
            return CardType.PLACEHOLDER
        return CardType.LOCKED

    @property
    def suit(self) -> int:
        if self.type != CardType.NUMBER:
            raise ValueError(f"{self!r} has no suit")
        return self.value // MAX_RANK

    @property
    def rank(self) -> int:
        if self.type != CardType.NUMBER:
            raise ValueError(f"{self!r} has no rank")
        return self.value % MAX_RANK + 1

    @property
    def kind(self) -> int:
        if self.type != CardType.SPECIAL:
            raise ValueError(f"{self!r} is not a special card")
        return self.value - 27

    @property
    def playable(self) -> bool:
        return self.value < 31

    @property
    def token(self) -> str:
        """Two-character code; the deal encoding for playable cards."""
        card_type = self.type
        if card_type == CardType.NUMBER:
            return f"{SUIT_CODES[self.suit]}{self.rank}"
        if card_type == CardType.SPECIAL:
            return SPECIAL_CODES[self.kind] * 2
        if card_type == CardType.BONUS:
            return BONUS_CODE * 2
        if card_type == CardType.PLACEHOLDER:
            return "--"
        return "##"

    def __repr__(self):
        card_type = self.type
        if card_type == CardType.NUMBER:
            return f"{self.rank}{'RGB'[self.suit]}"
        elif card_type == CardType.SPECIAL:
            return f"S{self.kind}"
        elif card_type == CardType.BONUS:
            return "BN"
        elif card_type == CardType.PLACEHOLDER:
            return "__"
        return "LK"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Card) and self.value == other.value

    def __lt__(self, other: "Card") -> bool:
        return self.value < other.value

    def __hash__(self) -> int:
        return self.value


BONUS = Card(30)
PLACEHOLDER = Card(31)
LOCKED = Card(32)


def can_stack_onto(moving: Card, target: Card, rule: StackingRule = StackingRule.LITERAL) -> bool:
    """Whether *moving* may be placed directly on top of *target*.

    Anything lands on a placeholder. Between two numbered cards the suits
    must differ; under ``LITERAL`` the target's suit index must equal the
    moving card's rank, under ``DESCENDING`` the moving rank must be one
    below the target rank. Every other pairing is illegal.
    """
    if target.type == CardType.PLACEHOLDER:
        return True
    if moving.type != CardType.NUMBER or target.type != CardType.NUMBER:
        return False
    if moving.suit == target.suit:
        return False
    if rule == StackingRule.LITERAL:
        return target.suit == moving.rank
    return moving.rank == target.rank - 1


def full_deck() -> List[Card]:
    deck = [Card.number(suit, rank) for suit in range(N_SUITS) for rank in range(1, MAX_RANK + 1)]
    deck.extend(Card.special(kind) for kind in range(N_SUITS) for _ in range(GROUP_SIZE))
    deck.append(BONUS)
    return deck


# ---------- sites & move records ----------
class Site(namedtuple("Site", ["area", "index", "pos"])):
    """A column or cell. ``pos`` is the run-start index of a column source; None means the top."""
    __slots__ = ()

    def __str__(self):
        if self.area == Area.CELL:
            return f"cell {self.index + 1}"
        if self.pos is None:
            return f"col {self.index + 1}"
        return f"col {self.index + 1}[{self.pos}]"


def column_site(index: int, pos: Optional[int] = None) -> Site:
    return Site(Area.COLUMN, index, pos)


def cell_site(index: int) -> Site:
    return Site(Area.CELL, index, None)


def site_order(site: Site) -> Tuple[int, int]:
    return site.area.value, site.index


class Move(namedtuple("Move", ["src", "dst"])):
    __slots__ = ()

    def __str__(self):
        return f"{self.src} -> {self.dst}"


# inverse of Board.apply: where the cards came from, where they went and
# the index they now occupy at the destination (source index for cells)
Undo = namedtuple("Undo", ["src", "dst", "pos"])

# one forced collection: CardType.NUMBER (key = suit), BONUS, or SPECIAL (key = kind, no site)
Collection = namedtuple("Collection", ["type", "site", "key"])


# ---------- deal encoding ----------
def _decode_token(token: str, position: int) -> Card:
    code, second = token[0], token[1]
    if code in SUIT_CODES:
        if second not in "123456789":
            raise MalformedDeal(f"token {position} {token!r}: rank must be a digit 1-9")
        return Card.number(SUIT_CODES.index(code), int(second))
    if code in SPECIAL_CODES:
        return Card.special(SPECIAL_CODES.index(code))
    if code == BONUS_CODE:
        return BONUS
    raise MalformedDeal(f"token {position} {token!r}: unknown card code {code!r}")


def decode_deal(deal: str) -> List[List[Card]]:
    """Split an 80-character deal into eight columns of five cards, deepest card first."""
    if not isinstance(deal, str):
        raise MalformedDeal(f"deal must be a string, got {type(deal).__name__}")
    if len(deal) != DEAL_LENGTH:
        raise MalformedDeal(f"deal must be {DEAL_LENGTH} characters, got {len(deal)}")
    cards = [_decode_token(deal[i:i + 2], i // 2) for i in range(0, DEAL_LENGTH, 2)]

    found = Counter(cards)
    expected = Counter(full_deck())
    if found != expected:
        missing = sorted((expected - found).elements())
        extra = sorted((found - expected).elements())
        raise MalformedDeal(f"deal is not a full deck: missing {missing}, extra {extra}")
    return [cards[i:i + CARDS_PER_COLUMN] for i in range(0, len(cards), CARDS_PER_COLUMN)]


def random_deal(seed: Optional[int] = None) -> str:
    rng = random.Random(seed)
    deck = full_deck()
    rng.shuffle(deck)
    return "".join(card.token for card in deck)


class Board:
    def __init__(self, rule: StackingRule = StackingRule.LITERAL):
        self.columns: List[List[Card]] = [[PLACEHOLDER] for _ in range(N_COLUMNS)]
        self.cells: List[Card] = [PLACEHOLDER] * N_CELLS
        self.foundations: List[int] = [0] * N_SUITS   # highest rank collected per suit
        self.bonus_collected = False
        self.locked_kinds: List[int] = []
        self.rule = StackingRule(rule)
        # sites and consumed cell of every collected group, for release_special_group
        self._groups: List[Tuple[List[Site], int]] = []

    @classmethod
    def empty(cls, rule: StackingRule = StackingRule.LITERAL) -> "Board":
        return cls(rule)

    @classmethod
    def from_deal(cls, deal: str, rule: StackingRule = StackingRule.LITERAL) -> "Board":
        board = cls(rule)
        for column, dealt in zip(board.columns, decode_deal(deal)):
            column.extend(dealt)
        return board

    def copy(self) -> "Board":
        new_b = Board(self.rule)
        new_b.columns = [column[:] for column in self.columns]
        new_b.cells = self.cells[:]
        new_b.foundations = self.foundations[:]
        new_b.bonus_collected = self.bonus_collected
        new_b.locked_kinds = self.locked_kinds[:]
        new_b._groups = [(sites[:], cell) for sites, cell in self._groups]
        return new_b

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return (self.columns == other.columns and self.cells == other.cells
                and self.foundations == other.foundations
                and self.bonus_collected == other.bonus_collected
                and self.locked_kinds == other.locked_kinds)

    __hash__ = None

    def __repr__(self):
        return f"Board({self.fingerprint()!r})"

    # ---------- site access ----------
    def _check_site(self, site: Site) -> None:
        if not isinstance(site, Site):
            raise IllegalMove(f"not a site: {site!r}")
        limit = N_COLUMNS if site.area == Area.COLUMN else N_CELLS
        if site.area not in (Area.COLUMN, Area.CELL) or not 0 <= site.index < limit:
            raise IllegalMove(f"no such site: {site!r}")

    def _resolve_pos(self, site: Site) -> int:
        column = self.columns[site.index]
        if site.pos is None:
            return len(column) - 1
        if not 0 <= site.pos < len(column):
            raise IllegalMove(f"{site} is outside a column of {len(column) - 1} cards")
        return site.pos

    def card_at(self, site: Site) -> Card:
        self._check_site(site)
        if site.area == Area.CELL:
            return self.cells[site.index]
        return self.columns[site.index][self._resolve_pos(site)]

    def _exposed(self, site: Site) -> Card:
        if site.area == Area.CELL:
            return self.cells[site.index]
        return self.columns[site.index][-1]

    def _take(self, site: Site) -> Card:
        if site.area == Area.CELL:
            card = self.cells[site.index]
            self.cells[site.index] = PLACEHOLDER
            return card
        return self.columns[site.index].pop()

    def _put(self, site: Site, card: Card) -> None:
        if site.area == Area.CELL:
            if self.cells[site.index] != PLACEHOLDER:
                raise IllegalMove(f"{site} is occupied by {self.cells[site.index]!r}")
            self.cells[site.index] = card
        else:
            self.columns[site.index].append(card)

    def exposed_sites(self) -> List[Site]:
        return [column_site(i) for i in range(N_COLUMNS)] + [cell_site(i) for i in range(N_CELLS)]

    # ---------- move generation ----------
    def run_starts(self, index: int) -> List[int]:
        """Positions in a column from which the cards up to the top form a legal chain, top first."""
        column = self.columns[index]
        if len(column) == 1:
            return []
        starts = [len(column) - 1]
        for pos in range(len(column) - 2, 0, -1):
            if not can_stack_onto(column[pos + 1], column[pos], self.rule):
                break
            starts.append(pos)
        return starts

    def legal_destinations(self, source: Site) -> Set[Site]:
        card = self.card_at(source)
        res: Set[Site] = set()
        if not card.playable:
            return res
        for idx in range(N_COLUMNS):
            if source.area == Area.COLUMN and idx == source.index:
                continue
            if can_stack_onto(card, self.columns[idx][-1], self.rule):
                res.add(column_site(idx))
        # no cell-to-cell transfers, and only a column's top card may enter a cell
        if source.area == Area.CELL:
            return res
        if self._resolve_pos(source) != len(self.columns[source.index]) - 1:
            return res
        for idx, held in enumerate(self.cells):
            if held == PLACEHOLDER:
                res.add(cell_site(idx))
        return res

    # ---------- moves ----------
    def apply(self, source: Site, destination: Site) -> Undo:
        self._check_site(source)
        self._check_site(destination)
        dst = Site(destination.area, destination.index, None)
        if source.area == Area.CELL and dst.area == Area.CELL:
            raise IllegalMove(f"cannot move between cells ({source} -> {dst})")
        if dst not in self.legal_destinations(source):
            raise IllegalMove(f"cannot move {self.card_at(source)!r} from {source} to {dst}")

        if source.area == Area.CELL:
            target = self.columns[dst.index]
            target.append(self.cells[source.index])
            self.cells[source.index] = PLACEHOLDER
            return Undo(source, dst, len(target) - 1)

        pos = self._resolve_pos(source)
        column = self.columns[source.index]
        src = column_site(source.index, pos)
        if dst.area == Area.CELL:
            self.cells[dst.index] = column.pop()
            return Undo(src, dst, pos)
        target = self.columns[dst.index]
        at = len(target)
        target.extend(column[pos:])
        del column[pos:]
        return Undo(src, dst, at)

    def undo(self, record: Undo) -> None:
        src, dst, at = record
        if src.area == Area.CELL:
            target = self.columns[dst.index]
            if self.cells[src.index] != PLACEHOLDER or len(target) - 1 != at:
                raise IllegalMove(f"undo record {record} does not match the board")
            self.cells[src.index] = target.pop()
            return
        column = self.columns[src.index]
        if len(column) != src.pos:
            raise IllegalMove(f"undo record {record} does not match the board")
        if dst.area == Area.CELL:
            column.append(self.cells[dst.index])
            self.cells[dst.index] = PLACEHOLDER
            return
        target = self.columns[dst.index]
        column.extend(target[at:])
        del target[at:]

    # ---------- automatic collection ----------
    def collect_sequential(self, source: Site) -> Tuple[bool, Optional[int]]:
        self._check_site(source)
        card = self._exposed(source)
        if card.type != CardType.NUMBER or card.rank != self.foundations[card.suit] + 1:
            return False, None
        self._take(source)
        self.foundations[card.suit] += 1
        return True, card.suit

    def uncollect(self, suit: int, site: Site) -> None:
        self._check_site(site)
        if not 0 <= suit < N_SUITS:
            raise IllegalMove(f"no such suit: {suit}")
        if self.foundations[suit] == 0:
            raise IllegalMove(f"nothing collected for suit {suit}")
        self._put(site, Card.number(suit, self.foundations[suit]))
        self.foundations[suit] -= 1

    def collect_bonus(self, source: Site) -> bool:
        self._check_site(source)
        if self._exposed(source) != BONUS:
            return False
        self._take(source)
        self.bonus_collected = True
        return True

    def uncollect_bonus(self, site: Site) -> None:
        self._check_site(site)
        if not self.bonus_collected:
            raise IllegalMove("the bonus card has not been collected")
        self._put(site, BONUS)
        self.bonus_collected = False

    def try_collect_special_group(self) -> Tuple[bool, Optional[int]]:
        """Lock four exposed copies of one special kind into a single cell.

        A cell is needed for the group: either an empty one or one already
        holding a copy of that kind. The consumed cell keeps ``LOCKED``.
        """
        exposed: Dict[int, List[Site]] = {kind: [] for kind in range(N_SUITS)}
        for site in self.exposed_sites():
            card = self._exposed(site)
            if card.type == CardType.SPECIAL:
                exposed[card.kind].append(site)

        for kind in range(N_SUITS):
            sites = exposed[kind]
            if len(sites) != GROUP_SIZE:
                continue
            held = [s.index for s in sites if s.area == Area.CELL]
            free = [i for i, c in enumerate(self.cells) if c == PLACEHOLDER]
            if not held and not free:
                continue
            for site in sites:
                self._take(site)
            cell = held[0] if held else free[0]
            self.cells[cell] = LOCKED
            self.locked_kinds.append(kind)
            self._groups.append((sites, cell))
            return True, kind
        return False, None

    def release_special_group(self, kind: int) -> None:
        if not self._groups or self.locked_kinds[-1] != kind:
            raise IllegalMove(f"special group {kind} is not the most recent collection")
        sites, cell = self._groups.pop()
        self.locked_kinds.pop()
        self.cells[cell] = PLACEHOLDER
        for site in sites:
            self._put(site, Card.special(kind))

    def auto_collect(self) -> List[Collection]:
        collected: List[Collection] = []
        changed = True
        while changed:
            changed = False
            for site in self.exposed_sites():
                ok, suit = self.collect_sequential(site)
                if ok:
                    collected.append(Collection(CardType.NUMBER, site, suit))
                    changed = True
                    break
            if changed:
                continue
            for site in self.exposed_sites():
                if self.collect_bonus(site):
                    collected.append(Collection(CardType.BONUS, site, None))
                    changed = True
                    break
            if changed:
                continue
            ok, kind = self.try_collect_special_group()
            if ok:
                collected.append(Collection(CardType.SPECIAL, None, kind))
                changed = True
        return collected

    def revert(self, collected: List[Collection]) -> None:
        for record in reversed(collected):
            if record.type == CardType.NUMBER:
                self.uncollect(record.key, record.site)
            elif record.type == CardType.BONUS:
                self.uncollect_bonus(record.site)
            else:
                self.release_special_group(record.key)

    # ---------- canonical form ----------
    def fingerprint(self) -> str:
        cells = "".join(card.token for card in sorted(self.cells))
        columns = "".join("".join(card.token for card in column[1:]) + "/" for column in self.columns)
        return f"{cells}|{columns}|{''.join(str(top) for top in self.foundations)}"

    # ---------- win check ----------
    def playable_count(self) -> int:
        return (sum(len(column) - 1 for column in self.columns)
                + sum(1 for card in self.cells if card.playable))

    def is_solved(self) -> bool:
        return (all(top == MAX_RANK for top in self.foundations)
                and self.bonus_collected
                and len(self.locked_kinds) == N_SUITS
                and self.playable_count() == 0)

    def format_status(self) -> str:
        """Cells and collected cards on one line each, then the columns printed downwards."""
        lines = [
            f"Cells: {' '.join(repr(c) for c in self.cells)}",
            "Collected: R:{} G:{} B:{}  bonus:{}  locked:{}".format(
                *self.foundations,
                "yes" if self.bonus_collected else "no",
                ",".join(f"S{kind}" for kind in self.locked_kinds) or "-",
            ),
            "     " + "".join(f"C{i + 1:<5}" for i in range(N_COLUMNS)),
        ]
        height = max(len(column) for column in self.columns) - 1
        for row in range(1, height + 1):
            line = f"{row:2}:  "
            for column in self.columns:
                line += f"{repr(column[row]) if row < len(column) else '':6}"
            lines.append(line.rstrip())
        if height == 0:
            lines.append("     (all columns empty)")
        return "\n".join(lines)
