"""Pytest configuration and fixtures."""

import random
from typing import Dict, List

import pytest

from agents.role_assigner import RoleAssigner
from agents.room_manager import RoomLifecycleManager
from models.game import Player, Role, RoomSettings
from services.memory_store import MemoryStore
from services.notifier import RoomNotifier


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RoomNotifier(queue_size=8)


@pytest.fixture
def manager(store, notifier):
    """Manager with seeded randomness so deals and codes are reproducible."""
    return RoomLifecycleManager(
        store,
        notifier,
        assigner=RoleAssigner(rng=random.Random(7)),
        rng=random.Random(7),
    )


@pytest.fixture
def make_room(manager):
    """Create a lobby with `n_players` seated players; user-0 is the host."""

    async def _make_room(n_players=4, undercover=1, mr_white=0, ready=True):
        room, host = await manager.create_room("user-0", "Player0")
        players: List[Player] = [host]
        for i in range(1, n_players):
            _, player = await manager.join_room(room.room_code, f"user-{i}", f"Player{i}")
            players.append(player)
        await manager.update_settings(
            room.id, "user-0", RoomSettings(undercover_count=undercover, mr_white_count=mr_white)
        )
        if ready:
            for p in players:
                await manager.toggle_ready(room.id, p.id, p.user_id)
        return await manager.store.get_room(room.id), players

    return _make_room


@pytest.fixture
def started_game(manager, make_room):
    """Create a room, start the game and open voting for round 1."""

    async def _started_game(n_players=4, undercover=1, mr_white=0):
        room, players = await make_room(n_players, undercover, mr_white)
        await manager.start_game(room.id, "user-0")
        await manager.start_voting(room.id, "user-0")
        return room, players

    return _started_game


@pytest.fixture
def cast_votes(manager):
    """Cast votes for the current round from a {voter_id: target_id} mapping."""

    async def _cast_votes(room_id: str, ballots: Dict[str, str]):
        room = await manager.store.get_room(room_id)
        for voter_id, target_id in ballots.items():
            voter = await manager.store.get_player(room_id, voter_id)
            await manager.cast_vote(room_id, room.current_round, voter_id, target_id, voter.user_id)

    return _cast_votes


@pytest.fixture
def eliminate(manager, cast_votes):
    """Every alive player votes for `target_id`, then the host tallies."""

    async def _eliminate(room_id: str, target_id: str, guess=None):
        players = await manager.store.get_players(room_id)
        await cast_votes(room_id, {p.id: target_id for p in players if p.is_alive})
        return await manager.tally(room_id, "user-0", guess)

    return _eliminate


@pytest.fixture
def roles_of(store):
    """Map each role to the player ids holding it."""

    async def _roles_of(room_id: str) -> Dict[Role, List[str]]:
        by_role: Dict[Role, List[str]] = {role: [] for role in Role}
        for secret in await store.get_secrets(room_id):
            by_role[secret.role].append(secret.player_id)
        return by_role

    return _roles_of
