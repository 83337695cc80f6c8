"""Core rules for classic 3x3 tic-tac-toe."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Tuple

Mark = str  # "X" or "O"
Cell = Optional[Mark]
Board = Tuple[Cell, ...]

X: Mark = "X"
O: Mark = "O"
FIRST_MARK: Mark = X
DRAW = "draw"
BOARD_SIZE = 9

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


class MoveResult(NamedTuple):
    board: Board
    winner: Optional[str]
    accepted: bool


def empty_board() -> Board:
    return (None,) * BOARD_SIZE


def next_mark(mark: Mark) -> Mark:
    return O if mark == X else X


def check_winner(board: Board) -> Optional[str]:
    """Return the winning mark, ``"draw"`` for a full board, or None."""
    for a, b, c in WINNING_LINES:
        v = board[a]
        if v is not None and v == board[b] == board[c]:
            return v
    if all(cell is not None for cell in board):
        return DRAW
    return None


def is_valid_index(cell_index: object) -> bool:
    # bool is an int subclass but never a cell
    return (
        isinstance(cell_index, int)
        and not isinstance(cell_index, bool)
        and 0 <= cell_index < BOARD_SIZE
    )


def apply_move(
    board: Board, mark: Mark, cell_index: int, finished: bool = False
) -> MoveResult:
    """Place ``mark`` on ``cell_index`` without mutating ``board``.

    Out-of-range indices, occupied cells and finished games are rejected:
    the original board comes back with no winner and ``accepted=False``.
    """
    if finished or not is_valid_index(cell_index) or board[cell_index] is not None:
        return MoveResult(board, None, False)
    cells = list(board)
    cells[cell_index] = mark
    new_board = tuple(cells)
    return MoveResult(new_board, check_winner(new_board), True)


@dataclass
class GameState:
    board: Board = field(default_factory=empty_board)
    current_mark: Mark = FIRST_MARK
    winner: Optional[str] = None

    @property
    def is_over(self) -> bool:
        return self.winner is not None

    def play(self, cell_index: int, finished: bool = False) -> bool:
        """Apply a move for the mark whose turn it is; flip the turn if accepted."""
        result = apply_move(self.board, self.current_mark, cell_index, finished)
        if not result.accepted:
            return False
        self.board = result.board
        self.winner = result.winner
        # Turn flips even on the winning move
        self.current_mark = next_mark(self.current_mark)
        return True

    def reset(self) -> None:
        self.board = empty_board()
        self.current_mark = FIRST_MARK
        self.winner = None
