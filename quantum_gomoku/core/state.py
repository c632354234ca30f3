"""
Game state for Quantum Gomoku.

GameState is the single source of truth for a game. It is a plain value:
the engine produces new states from old ones, the history keeps copies of
it, and networked play ships it whole as a document.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .board import Board, Color, Stone, STONE_PROBABILITIES, WIN_LENGTH


OBSERVATION_QUOTA = 5


class GameMode(Enum):
    LOCAL_VS_LOCAL = 'LOCAL_VS_LOCAL'
    LOCAL_VS_HEURISTIC = 'LOCAL_VS_HEURISTIC'
    NETWORKED = 'NETWORKED'


class TurnPhase(Enum):
    AWAITING_PLACEMENT = 'AWAITING_PLACEMENT'
    PLACED = 'PLACED'
    COLLAPSING = 'COLLAPSING'
    SHOWING_NO_WINNER = 'SHOWING_NO_WINNER'
    REVERTING = 'REVERTING'
    OVER = 'OVER'


class RoomStatus(Enum):
    WAITING = 'WAITING'
    PLAYING = 'PLAYING'


def is_strength_allowed(last_strength, index):
    """
    Check the no-repeat rule: the strongest stone (index 0) cannot be
    used on two consecutive placements by the same color.
    """
    if index not in (0, 1):
        return False
    return not (index == 0 and last_strength == 0)


def default_strength(last_strength):
    """Strength preselected at the start of a turn."""
    return 1 if last_strength == 0 else 0


def _initial_counts():
    return {Color.FIRST: OBSERVATION_QUOTA, Color.SECOND: OBSERVATION_QUOTA}


def _initial_last_strength():
    return {Color.FIRST: None, Color.SECOND: None}


@dataclass
class GameState:
    board: Board = field(default_factory=Board)
    mode: GameMode = GameMode.LOCAL_VS_LOCAL
    heuristic_color: Optional[Color] = None
    current_player: Color = Color.FIRST
    selected_strength: int = 0
    last_strength_used: Dict[Color, Optional[int]] = field(default_factory=_initial_last_strength)
    observations_remaining: Dict[Color, int] = field(default_factory=_initial_counts)
    turn_phase: TurnPhase = TurnPhase.AWAITING_PLACEMENT
    stone_placed: bool = False
    winner: Optional[Color] = None
    winning_line: Optional[List[Tuple[int, int]]] = None
    confirm_placement: bool = False
    pending_confirmation: Optional[Tuple[int, int]] = None
    # Networked play only
    status: Optional[RoomStatus] = None
    host_color: Optional[Color] = None
    host_id: Optional[str] = None
    guest_id: Optional[str] = None

    @property
    def is_collapsing(self):
        return self.turn_phase == TurnPhase.COLLAPSING

    @property
    def is_showing_no_winner(self):
        return self.turn_phase == TurnPhase.SHOWING_NO_WINNER

    @property
    def is_reverting(self):
        return self.turn_phase == TurnPhase.REVERTING

    @property
    def is_over(self):
        return self.turn_phase == TurnPhase.OVER

    def strength_allowed(self, index, color=None):
        color = self.current_player if color is None else color
        return is_strength_allowed(self.last_strength_used[color], index)

    def default_strength(self, color=None):
        color = self.current_player if color is None else color
        return default_strength(self.last_strength_used[color])

    def stone_probability(self):
        """Probability of the stone the current player would place now."""
        return STONE_PROBABILITIES[self.current_player][self.selected_strength]

    def copy(self):
        """Deep copy, safe to keep in history while this state moves on."""
        return replace(
            self,
            board=self.board.copy(),
            last_strength_used=dict(self.last_strength_used),
            observations_remaining=dict(self.observations_remaining),
            winning_line=list(self.winning_line) if self.winning_line is not None else None,
        )

    def to_document(self) -> Dict[str, Any]:
        """
        Serialize into a flat JSON-compatible document.

        Enums are stored by name, the board as a list of rows where empty
        cells are None.
        """
        rows = []
        for row in range(self.board.size):
            cells = []
            for col in range(self.board.size):
                stone = self.board.get(row, col)
                if stone is None:
                    cells.append(None)
                else:
                    cells.append({
                        'probability': stone.probability,
                        'observed_color': _color_name(stone.observed_color),
                    })
            rows.append(cells)

        return {
            'board': rows,
            'mode': self.mode.name,
            'heuristic_color': _color_name(self.heuristic_color),
            'current_player': self.current_player.name,
            'selected_strength': self.selected_strength,
            'last_strength_used': {c.name: v for c, v in self.last_strength_used.items()},
            'observations_remaining': {c.name: v for c, v in self.observations_remaining.items()},
            'turn_phase': self.turn_phase.name,
            'stone_placed': self.stone_placed,
            'winner': _color_name(self.winner),
            'winning_line': [list(p) for p in self.winning_line] if self.winning_line else None,
            'confirm_placement': self.confirm_placement,
            'pending_confirmation': list(self.pending_confirmation) if self.pending_confirmation else None,
            'status': self.status.name if self.status is not None else None,
            'host_color': _color_name(self.host_color),
            'host_id': self.host_id,
            'guest_id': self.guest_id,
        }

    @classmethod
    def from_document(cls, document):
        """
        Build a structurally valid state from a possibly sparse document.

        Document stores drop empty values, so any missing row, cell or
        counter falls back to its initial value. A field that is present but
        cannot be decoded raises ValueError.
        """
        document = _as_dict(document, 'document')
        state = cls()
        board = state.board

        rows = _as_list(document.get('board'), board.size)
        for row, row_data in enumerate(rows):
            for col, cell in enumerate(_as_list(row_data, board.size)):
                if not isinstance(cell, dict) or cell.get('probability') is None:
                    continue
                board.set_stone(row, col, Stone(
                    probability=_number(float, cell['probability'], 'probability'),
                    observed_color=_decode_color(cell.get('observed_color')),
                ))

        state.mode = _decode_enum(GameMode, document.get('mode'), GameMode.LOCAL_VS_LOCAL)
        state.heuristic_color = _decode_color(document.get('heuristic_color'))
        state.current_player = _decode_color(document.get('current_player')) or Color.FIRST
        state.selected_strength = _number(int, document.get('selected_strength') or 0, 'selected_strength')

        last_used = _as_dict(document.get('last_strength_used'), 'last_strength_used')
        remaining = _as_dict(document.get('observations_remaining'), 'observations_remaining')
        for color in Color:
            value = last_used.get(color.name)
            state.last_strength_used[color] = _number(int, value, 'last_strength_used') if value is not None else None
            count = remaining.get(color.name)
            state.observations_remaining[color] = max(0, _number(int, count, 'observations_remaining')) if count is not None else OBSERVATION_QUOTA

        state.turn_phase = _decode_enum(TurnPhase, document.get('turn_phase'), TurnPhase.AWAITING_PLACEMENT)
        state.stone_placed = bool(document.get('stone_placed', False))
        state.winner = _decode_color(document.get('winner'))
        line = document.get('winning_line')
        state.winning_line = [tuple(_number(int, v, 'winning_line') for v in _as_list(p, 2)) for p in _as_list(line, WIN_LENGTH)] if line else None
        state.confirm_placement = bool(document.get('confirm_placement', False))
        pending = document.get('pending_confirmation')
        state.pending_confirmation = tuple(_number(int, v, 'pending_confirmation') for v in _as_list(pending, 2)) if pending else None
        state.status = _decode_enum(RoomStatus, document.get('status'), None)
        state.host_color = _decode_color(document.get('host_color'))
        state.host_id = document.get('host_id')
        state.guest_id = document.get('guest_id')
        return state


def _color_name(color):
    return color.name if color is not None else None


def _decode_color(value):
    if value is None:
        return None
    if isinstance(value, str):
        try:
            return Color[value]
        except KeyError:
            raise ValueError(f"Unknown color: {value!r}")
    try:
        return Color(int(value))
    except (TypeError, ValueError):
        raise ValueError(f"Unknown color: {value!r}")


def _decode_enum(enum_cls, value, default):
    if value is None:
        return default
    try:
        return enum_cls[value]
    except (KeyError, TypeError):
        raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}")


def _as_list(value, length):
    """
    Materialize a sequence of exactly `length` items.

    Accepts None, lists shorter than `length`, and dicts keyed by index
    (how stores return arrays with holes). Missing items become None.
    """
    items = [None] * length
    if value is None:
        return items
    if isinstance(value, dict):
        for key, item in value.items():
            index = _number(int, key, 'index')
            if 0 <= index < length:
                items[index] = item
        return items
    if not isinstance(value, list):
        raise ValueError(f"Expected a list, got {value!r}")
    for index, item in enumerate(value[:length]):
        items[index] = item
    return items


def _as_dict(value, name):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping, got {value!r}")
    return value


def _number(cast, value, name):
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"Bad {name}: {value!r}")
