"""
Game implementation for Quantum Gomoku.
"""
import logging
import random
import uuid
from enum import Enum

from .board import Color, STONE_PROBABILITIES
from .history import History
from .scheduler import ManualScheduler
from .state import GameMode, GameState, RoomStatus, TurnPhase
from ..ai.agents.heuristic_agent import HeuristicAgent
from ..net.sync import SyncError


logger = logging.getLogger(__name__)

# Delays in seconds
THINK_DELAY = 1.0
DECIDE_DELAY = 1.0
COLLAPSE_DELAY = 1.0
NO_WINNER_DELAY = 2.0
REVERT_DELAY = 0.5
PRESENCE_GRACE = 3.0

_UNSET = object()


class HeuristicPhase(Enum):
    IDLE = 'IDLE'
    THINKING = 'THINKING'
    DECIDING = 'DECIDING'


class Game:
    """
    Manages a Quantum Gomoku game session.

    The engine owns the canonical GameState and is the only thing that
    changes it. Every player action validates against the current phase
    and turn, produces a new state, and notifies subscribers. Illegal
    actions are ignored and return False; nothing is raised to the caller.

    Timed steps (heuristic thinking, collapse, no-winner display, revert)
    go through one cancellable timer, `pending_timer`.

    In networked mode the state is replicated through a SyncAdapter: every
    local change is written as a whole document, and every document
    delivered by the store replaces the local state.
    """

    def __init__(self, mode=GameMode.LOCAL_VS_LOCAL, heuristic_color=None,
                 scheduler=None, seed=None, rng=None, agent=None,
                 sync=None, client_id=None):
        """
        Initialize a new game.

        Args:
            mode (GameMode): Local, against the heuristic, or networked
            heuristic_color (Color, optional): Heuristic's color, SECOND by default
            scheduler (Scheduler, optional): Timer source, ManualScheduler by default
            seed (int, optional): Seed for the random source
            rng (random.Random, optional): Random source, overrides seed
            agent (HeuristicAgent, optional): Computer opponent
            sync (SyncAdapter, optional): Document store for networked play
            client_id (str, optional): This participant's identity in a room
        """
        self.rng = rng if rng is not None else random.Random(seed)
        self.scheduler = scheduler if scheduler is not None else ManualScheduler()
        self.agent = agent if agent is not None else HeuristicAgent(rng=self.rng)
        self.sync = sync
        self.client_id = client_id or uuid.uuid4().hex

        self.history = History()
        self.pending_timer = None
        self.heuristic_phase = HeuristicPhase.IDLE
        self.notice = None
        self._listeners = []

        # Networked play
        self.room_id = None
        self.local_color = None
        self.connections = {}
        self.opponent_disconnected = False
        self._unsubscribe = None
        self._presence_timer = None

        if mode == GameMode.NETWORKED:
            # A networked game only exists once join_room() succeeds
            mode = GameMode.LOCAL_VS_LOCAL
        self.state = self._fresh_state(mode, heuristic_color)
        self._drive_heuristic()

    @property
    def board(self):
        return self.state.board

    @property
    def current_player(self):
        return self.state.current_player

    @property
    def turn_phase(self):
        return self.state.turn_phase

    @property
    def winner(self):
        return self.state.winner

    def subscribe(self, listener):
        """
        Register `listener(state)` to be called after every state change.

        Returns:
            callable: Removes the listener when called
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dismiss_notice(self):
        self.notice = None

    # ------------------------------------------------------------------
    # Player actions

    def select_strength(self, index):
        """
        Choose the strength for the next stone.

        Args:
            index (int): 0 (strongest) or 1

        Returns:
            bool: True if the selection changed
        """
        state = self.state
        if state.turn_phase != TurnPhase.AWAITING_PLACEMENT:
            return self._ignore('select_strength', 'stone already placed or turn not open')
        if not self._may_act():
            return self._ignore('select_strength', 'not this player\'s turn')
        if not state.strength_allowed(index):
            return self._ignore('select_strength', f'strength {index} is not allowed')
        if index == state.selected_strength:
            return False

        next_state = state.copy()
        next_state.selected_strength = index
        return self._commit(next_state)

    def toggle_confirmation_mode(self):
        """
        Switch placement confirmation on or off.

        With confirmation on, the first click on a cell only marks it and a
        second click on the same cell places the stone. The setting is local
        to this client and is never written to a room.
        """
        next_state = self.state.copy()
        next_state.confirm_placement = not next_state.confirm_placement
        next_state.pending_confirmation = None
        return self._commit(next_state, replicate=False)

    def place_stone(self, row, col):
        """
        Place a stone of the selected strength for the current player.

        Args:
            row (int): Row position (0-14)
            col (int): Column position (0-14)

        Returns:
            bool: True if the state changed (stone placed or cell marked)
        """
        state = self.state
        if state.turn_phase != TurnPhase.AWAITING_PLACEMENT:
            return self._ignore('place_stone', f'phase is {state.turn_phase.name}')
        if not self._may_act():
            return self._ignore('place_stone', 'not this player\'s turn')
        if not (state.board.in_bounds(row, col) and state.board.is_empty(row, col)):
            return self._ignore('place_stone', f'({row}, {col}) is not an empty cell')
        if not state.strength_allowed(state.selected_strength):
            return self._ignore('place_stone', 'selected strength is not allowed')

        if state.confirm_placement and state.pending_confirmation != (row, col):
            next_state = state.copy()
            next_state.pending_confirmation = (row, col)
            return self._commit(next_state, replicate=False)

        return self._place(row, col, state.selected_strength)

    def end_turn(self):
        """End the turn after placing a stone, without observing."""
        state = self.state
        if state.turn_phase != TurnPhase.PLACED:
            return self._ignore('end_turn', f'phase is {state.turn_phase.name}')
        if not self._may_act():
            return self._ignore('end_turn', 'not this player\'s turn')

        return self._commit(self._advance_turn(state), snapshot=True)

    def observe(self):
        """
        Observe the board after placing a stone.

        Collapse is resolved after COLLAPSE_DELAY. Without a winner the board
        shows the result, reverts, and the turn passes on automatically.
        """
        state = self.state
        if state.turn_phase != TurnPhase.PLACED:
            return self._ignore('observe', f'phase is {state.turn_phase.name}')
        if not self._may_act():
            return self._ignore('observe', 'not this player\'s turn')
        if state.observations_remaining[state.current_player] <= 0:
            return self._ignore('observe', 'no observations left')

        return self._start_observation()

    def undo(self):
        """
        Restore the state before the last action.

        Disabled in networked mode. Against the heuristic, rewinds to the
        start of the human's most recent turn, before any stone was placed.
        """
        state = self.state
        if state.mode == GameMode.NETWORKED:
            return self._ignore('undo', 'undo is disabled in networked mode')
        if state.is_over:
            return self._ignore('undo', 'game is over')
        if not self.history:
            return self._ignore('undo', 'history is empty')

        if state.mode == GameMode.LOCAL_VS_HEURISTIC:
            human = state.heuristic_color.opponent
            found = self.history.rewind(
                lambda frame: frame.current_player == human and not frame.stone_placed)
        else:
            found = self.history.pop()

        if found is None:
            return self._ignore('undo', 'no turn of the human player to return to')

        self._cancel_timer()
        self.state, self.history = found
        logger.debug("Undo: back to %s, %s", self.state.current_player.name, self.state.turn_phase.name)
        self._emit()
        self._drive_heuristic()
        return True

    def reset(self, mode=None, heuristic_color=_UNSET):
        """
        Start a new game.

        Args:
            mode (GameMode, optional): New mode, current mode if omitted
            heuristic_color (Color, optional): New heuristic color, current if omitted
        """
        state = self.state
        mode = mode if mode is not None else state.mode
        if heuristic_color is _UNSET:
            heuristic_color = state.heuristic_color

        if mode == GameMode.NETWORKED:
            if self.room_id is None:
                return self._ignore('reset', 'join a room to play networked')
            if state.status != RoomStatus.PLAYING:
                return self._ignore('reset', 'room is still waiting for an opponent')
            fresh = self._fresh_state(GameMode.NETWORKED, None)
            fresh.status = state.status
            fresh.host_color = state.host_color
            fresh.host_id = state.host_id
            fresh.guest_id = state.guest_id
            fresh.confirm_placement = state.confirm_placement
            if not self._commit(fresh):
                return False
            self._cancel_timer()
            return True

        if self.room_id is not None:
            self.leave_room()

        self._cancel_timer()
        self.history = History()
        self.state = self._fresh_state(mode, heuristic_color)
        logger.debug("New %s game", mode.name)
        self._emit()
        self._drive_heuristic()
        return True

    # ------------------------------------------------------------------
    # Networked play

    def join_room(self, room_id):
        """
        Join or create a networked room.

        The first participant becomes host and waits. The second becomes
        guest: a coin flip assigns the host's color and the game starts.

        Returns:
            bool: True if this client is now in the room
        """
        if self.sync is None:
            return self._ignore('join_room', 'no sync adapter configured')
        if not room_id:
            return self._ignore('join_room', 'empty room id')
        if self.room_id is not None:
            return self._ignore('join_room', f'already in room {self.room_id}')

        try:
            document = self.sync.read(room_id)
            seat = self._claim_seat(room_id, document)
        except SyncError as exc:
            self._report_failure(f"Could not join room {room_id}", exc)
            return False
        except ValueError as exc:
            self._report_failure(f"Room {room_id} holds an unreadable document", exc)
            return False
        if seat is None:
            return False

        # A failed join leaves the room document as it was
        state, claimed = seat
        try:
            self.sync.set_presence(room_id, self.client_id, True)
            if claimed:
                self.sync.write(room_id, state.to_document())
        except SyncError as exc:
            self._clear_presence(room_id)
            self._report_failure(f"Could not join room {room_id}", exc)
            return False

        self._cancel_timer()
        self.history = History()
        self.room_id = room_id
        self.opponent_disconnected = False
        self.state = state
        self.local_color = self._local_color_for(state)
        logger.info("Joined room %s as %s", room_id,
                    'host' if state.host_id == self.client_id else 'guest')
        self._emit()

        try:
            self._unsubscribe = self.sync.subscribe(room_id, self.apply_remote)
        except SyncError as exc:
            self._report_failure(f"Could not follow room {room_id}", exc)
        return True

    def _claim_seat(self, room_id, document):
        """
        Decide this client's seat in the room.

        Returns:
            tuple or None: (state to play from, whether the room must be
            written), None if the room is full
        """
        connections = _connections(document)
        existing = GameState.from_document(document) if document else None

        if (existing is None or existing.status is None
                or (existing.status == RoomStatus.WAITING and not connections.get(existing.host_id))):
            state = self._fresh_state(GameMode.NETWORKED, None)
            state.status = RoomStatus.WAITING
            state.host_id = self.client_id
            return state, True

        existing.mode = GameMode.NETWORKED
        if self.client_id in (existing.host_id, existing.guest_id):
            return existing, False

        if existing.status == RoomStatus.WAITING:
            existing.guest_id = self.client_id
            existing.host_color = self.rng.choice([Color.FIRST, Color.SECOND])
            existing.status = RoomStatus.PLAYING
            return existing, True

        self.notice = f"Room {room_id} is full"
        logger.warning(self.notice)
        self._emit()
        return None

    def leave_room(self):
        """
        Leave the current room and return to a local game.

        Presence is cleared on a best-effort basis so the peer notices the
        departure.
        """
        if self.room_id is None:
            return self._ignore('leave_room', 'not in a room')

        room_id = self.room_id
        self._cancel_timer()
        self._cancel_presence_timer()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self._clear_presence(room_id)

        self.room_id = None
        self.local_color = None
        self.connections = {}
        self.opponent_disconnected = False
        self.history = History()
        self.state = self._fresh_state(GameMode.LOCAL_VS_LOCAL, None)
        logger.info("Left room %s", room_id)
        self._emit()
        return True

    def _clear_presence(self, room_id):
        """Best-effort removal of this client's presence flag."""
        try:
            self.sync.set_presence(room_id, self.client_id, False)
        except SyncError as exc:
            logger.warning("Could not clear presence in room %s: %s", room_id, exc)

    def apply_remote(self, document):
        """
        Replace the local state with a document delivered by the store.

        The document may be sparse; it is materialized into a full state
        first. Re-delivery of the current state is a no-op.
        """
        if self.room_id is None:
            return
        if document is None:
            logger.warning("Room %s disappeared from the store", self.room_id)
            return

        try:
            incoming = GameState.from_document(document)
        except ValueError as exc:
            logger.warning("Ignoring malformed document for room %s: %s", self.room_id, exc)
            return

        incoming.mode = GameMode.NETWORKED
        # Local-only settings survive replacement
        incoming.confirm_placement = self.state.confirm_placement
        pending = self.state.pending_confirmation
        if (pending is not None and incoming.turn_phase == TurnPhase.AWAITING_PLACEMENT
                and incoming.board.is_empty(*pending)):
            incoming.pending_confirmation = pending
        else:
            incoming.pending_confirmation = None

        self.connections = _connections(document)
        self.local_color = self._local_color_for(incoming)
        self._watch_presence(incoming)

        if incoming == self.state:
            return

        self.state = incoming
        logger.debug("Remote update in room %s: %s to play, %s", self.room_id,
                     incoming.current_player.name, incoming.turn_phase.name)
        self._emit()

    def _local_color_for(self, state):
        if state.host_color is None:
            return None
        if self.client_id == state.host_id:
            return state.host_color
        if self.client_id == state.guest_id:
            return state.host_color.opponent
        return None

    def _opponent_id(self, state):
        if self.client_id == state.host_id:
            return state.guest_id
        return state.host_id

    def _watch_presence(self, state):
        """Start or stop the disconnect grace timer for the opponent."""
        opponent = self._opponent_id(state)
        if state.status != RoomStatus.PLAYING or opponent is None:
            return

        if self.connections.get(opponent):
            self._cancel_presence_timer()
            if self.opponent_disconnected:
                self.opponent_disconnected = False
                self.notice = None
            return

        if self._presence_timer is None and not self.opponent_disconnected:
            self._presence_timer = self.scheduler.call_later(PRESENCE_GRACE, self._presence_expired)

    def _presence_expired(self):
        self._presence_timer = None
        if self.room_id is None:
            return
        if self.connections.get(self._opponent_id(self.state)):
            return

        self.opponent_disconnected = True
        self.notice = "Opponent disconnected"
        logger.warning("Opponent left room %s", self.room_id)
        self._emit()

    def _cancel_presence_timer(self):
        if self._presence_timer is not None:
            self._presence_timer.cancel()
            self._presence_timer = None

    # ------------------------------------------------------------------
    # Turn mechanics

    def _fresh_state(self, mode, heuristic_color):
        if mode == GameMode.LOCAL_VS_HEURISTIC:
            heuristic_color = heuristic_color if heuristic_color is not None else Color.SECOND
        else:
            heuristic_color = None
        return GameState(mode=mode, heuristic_color=heuristic_color)

    def _place(self, row, col, strength):
        state = self.state
        color = state.current_player

        next_state = state.copy()
        next_state.board.place(row, col, STONE_PROBABILITIES[color][strength])
        next_state.selected_strength = strength
        next_state.last_strength_used[color] = strength
        next_state.stone_placed = True
        next_state.turn_phase = TurnPhase.PLACED
        next_state.pending_confirmation = None

        logger.debug("%s placed strength %d at (%d, %d)", color.name, strength, row, col)
        return self._commit(next_state, snapshot=True)

    def _advance_turn(self, state):
        """Next state with the turn passed to the other color."""
        next_state = state.copy()
        next_state.current_player = state.current_player.opponent
        next_state.selected_strength = next_state.default_strength()
        next_state.stone_placed = False
        next_state.turn_phase = TurnPhase.AWAITING_PLACEMENT
        next_state.pending_confirmation = None
        return next_state

    def _start_observation(self):
        next_state = self.state.copy()
        next_state.turn_phase = TurnPhase.COLLAPSING
        if not self._commit(next_state, snapshot=True):
            return False

        logger.debug("%s observes", next_state.current_player.name)
        self._schedule(COLLAPSE_DELAY, self._resolve_observation)
        return True

    def _resolve_observation(self):
        state = self.state
        if state.turn_phase != TurnPhase.COLLAPSING:
            return

        observer = state.current_player
        next_state = state.copy()
        next_state.board.collapse(self.rng)
        next_state.observations_remaining[observer] = max(0, state.observations_remaining[observer] - 1)

        result = next_state.board.check_winner(tiebreak=observer)
        if result.winner is not None:
            next_state.turn_phase = TurnPhase.OVER
            next_state.winner = result.winner
            next_state.winning_line = result.line
            if self._commit(next_state):
                logger.info("%s wins with %s", result.winner.name, result.line)
            return

        next_state.turn_phase = TurnPhase.SHOWING_NO_WINNER
        if self._commit(next_state):
            self._schedule(NO_WINNER_DELAY, self._revert_observation)

    def _revert_observation(self):
        state = self.state
        if state.turn_phase != TurnPhase.SHOWING_NO_WINNER:
            return

        next_state = state.copy()
        next_state.board.revert()
        next_state.turn_phase = TurnPhase.REVERTING
        if self._commit(next_state):
            self._schedule(REVERT_DELAY, self._complete_observation)

    def _complete_observation(self):
        state = self.state
        if state.turn_phase != TurnPhase.REVERTING:
            return
        self._commit(self._advance_turn(state))

    # ------------------------------------------------------------------
    # Heuristic opponent

    def _is_heuristic_turn(self, state):
        return (state.mode == GameMode.LOCAL_VS_HEURISTIC
                and state.current_player == state.heuristic_color)

    def _drive_heuristic(self):
        """Start the heuristic's turn if it is due and nothing is in flight."""
        state = self.state
        if not self._is_heuristic_turn(state) or self.pending_timer is not None:
            return
        if state.turn_phase != TurnPhase.AWAITING_PLACEMENT:
            return
        if self.heuristic_phase != HeuristicPhase.IDLE:
            return

        self._schedule(THINK_DELAY, self._heuristic_place)
        self.heuristic_phase = HeuristicPhase.THINKING

    def _heuristic_place(self):
        self.heuristic_phase = HeuristicPhase.IDLE
        state = self.state
        if not self._is_heuristic_turn(state) or state.turn_phase != TurnPhase.AWAITING_PLACEMENT:
            return

        color = state.current_player
        move = self.agent.select_action(state.board, color)
        if move is None:
            logger.info("Board is full, %s cannot move", color.name)
            return

        strength = self.agent.select_strength(state.last_strength_used[color])
        if self._place(move[0], move[1], strength):
            self._schedule(DECIDE_DELAY, self._heuristic_decide)
            self.heuristic_phase = HeuristicPhase.DECIDING

    def _heuristic_decide(self):
        self.heuristic_phase = HeuristicPhase.IDLE
        state = self.state
        if not self._is_heuristic_turn(state) or state.turn_phase != TurnPhase.PLACED:
            return

        color = state.current_player
        if self.agent.should_observe(state.board, color, state.observations_remaining[color]):
            self._start_observation()
        else:
            self._commit(self._advance_turn(state), snapshot=True)

    # ------------------------------------------------------------------
    # Plumbing

    def _may_act(self):
        """Whether local input may drive the current turn."""
        state = self.state
        if state.mode == GameMode.NETWORKED:
            return self._owns_turn(state)
        if state.mode == GameMode.LOCAL_VS_HEURISTIC:
            return state.current_player != state.heuristic_color
        return True

    def _owns_turn(self, state):
        return (self.room_id is not None
                and state.status == RoomStatus.PLAYING
                and self.local_color is not None
                and state.current_player == self.local_color)

    def _commit(self, next_state, snapshot=False, replicate=True):
        """
        Make `next_state` current and notify subscribers.

        Args:
            snapshot (bool): Push the previous state onto the undo history
                (local modes only)
            replicate (bool): Write the state to the room in networked mode

        Returns:
            bool: False if a networked write was refused or failed; the
            previous state is kept in that case
        """
        previous = self.state
        networked = previous.mode == GameMode.NETWORKED and self.room_id is not None

        if networked and replicate:
            # Only the player to move writes, except to restart a finished game
            if not (self._owns_turn(previous) or previous.is_over):
                return self._ignore('write', f'{previous.current_player.name} owns the turn')
            self.state = next_state
            try:
                self.sync.write(self.room_id, next_state.to_document())
            except SyncError as exc:
                self.state = previous
                self._report_failure(f"Could not update room {self.room_id}", exc)
                return False
        else:
            if snapshot and not networked:
                self.history = self.history.push(previous)
            self.state = next_state

        self._emit()
        self._drive_heuristic()
        return True

    def _schedule(self, delay, callback):
        self._cancel_timer()

        def fire():
            self.pending_timer = None
            callback()

        self.pending_timer = self.scheduler.call_later(delay, fire)

    def _cancel_timer(self):
        if self.pending_timer is not None:
            self.pending_timer.cancel()
            self.pending_timer = None
        self.heuristic_phase = HeuristicPhase.IDLE

    def _report_failure(self, message, exc):
        logger.warning("%s: %s", message, exc)
        self.notice = f"{message}: {exc}"
        self._emit()

    def _ignore(self, action, reason):
        logger.debug("Ignored %s: %s", action, reason)
        return False

    def _emit(self):
        for listener in list(self._listeners):
            listener(self.state)


def _connections(document):
    """Presence flags of a room document, empty when missing or malformed."""
    connections = document.get('connections') if isinstance(document, dict) else None
    return dict(connections) if isinstance(connections, dict) else {}
