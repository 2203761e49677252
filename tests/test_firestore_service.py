"""FirestoreService against an in-process stand-in for the Firestore client.

The fake keeps documents in a dict keyed by path, rejects document ids the
way Firestore does, and applies transaction and batch writes all-or-nothing
at commit time, so the service's claim documents and compare-and-swap
commits are exercised without an emulator.
"""

import copy
import re

import pytest
from google.api_core.exceptions import AlreadyExists, NotFound

from errors import ConflictError
from models.game import Player, Role, Room, RoomStatus, TallyOutcome, Vote, VoteResult, Winner
from services.firestore_service import FirestoreService, claim_id

_RESERVED_ID = re.compile(r"^__.*__$")


class FakeSnapshot:

    def __init__(self, reference, data):
        self.reference = reference
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocument:

    def __init__(self, client, path):
        self._client = client
        self.path = path

    def collection(self, name):
        return FakeCollection(self._client, self.path + (name,))

    def get(self, transaction=None):
        return FakeSnapshot(self, self._client.docs.get(self.path))

    def create(self, data):
        self._client.apply([("create", self.path, data)])

    def set(self, data):
        self._client.apply([("set", self.path, data)])

    def update(self, data):
        self._client.apply([("update", self.path, data)])

    def delete(self):
        self._client.apply([("delete", self.path, None)])


class FakeQuery:

    def __init__(self, collection, field, value):
        self._collection = collection
        self._field = field
        self._value = value

    def stream(self, transaction=None):
        for snap in self._collection.stream(transaction):
            if snap.to_dict().get(self._field) == self._value:
                yield snap


class FakeCollection:

    def __init__(self, client, path):
        self._client = client
        self.path = path

    def document(self, document_id):
        if "/" in document_id or document_id in (".", "..") or _RESERVED_ID.match(document_id):
            raise ValueError(f"Invalid document id: {document_id!r}")
        return FakeDocument(self._client, self.path + (document_id,))

    def stream(self, transaction=None):
        depth = len(self.path) + 1
        for path, data in sorted(self._client.docs.items()):
            if len(path) == depth and path[:-1] == self.path:
                yield FakeSnapshot(FakeDocument(self._client, path), data)

    def where(self, field, op, value):
        assert op == "=="
        return FakeQuery(self, field, value)


class FakeWriteBatch:
    """Buffers writes; commit() applies them together or not at all."""

    def __init__(self, client):
        self._client = client
        self._ops = []

    def create(self, ref, data):
        self._ops.append(("create", ref.path, data))

    def set(self, ref, data):
        self._ops.append(("set", ref.path, data))

    def update(self, ref, data):
        self._ops.append(("update", ref.path, data))

    def delete(self, ref):
        self._ops.append(("delete", ref.path, None))

    def commit(self):
        self._client.apply(self._ops)
        self._ops = []


class FakeFirestore:

    def __init__(self):
        self.docs = {}
        self.commits = 0
        # Runs once between a transaction's reads and its commit
        self.before_commit = None

    def collection(self, name):
        return FakeCollection(self, (name,))

    def transaction(self):
        return FakeWriteBatch(self)

    def batch(self):
        return FakeWriteBatch(self)

    def apply(self, ops):
        staged = dict(self.docs)
        for kind, path, data in ops:
            if kind == "create":
                if path in staged:
                    raise AlreadyExists(f"Document already exists: {'/'.join(path)}")
                staged[path] = copy.deepcopy(data)
            elif kind == "set":
                staged[path] = copy.deepcopy(data)
            elif kind == "update":
                if path not in staged:
                    raise NotFound(f"No document to update: {'/'.join(path)}")
                staged[path] = {**staged[path], **copy.deepcopy(data)}
            else:
                staged.pop(path, None)
        self.docs = staged
        self.commits += 1

    def transactional(self, fn):
        def run(transaction):
            result = fn(transaction)
            if self.before_commit:
                hook, self.before_commit = self.before_commit, None
                hook()
            transaction.commit()
            return result

        return run


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def store(db):
    """Overrides the in-memory store so the shared manager fixtures run on Firestore."""
    return FirestoreService(client=db, transactional=db.transactional)


async def voting_room(store):
    room = await store.create_room(Room(room_code="abc234", host_id="user-0"))
    player = await store.add_player(Player(room_id=room.id, user_id="user-0", name="Ann"))
    await store.begin_game(room.id, [], {"status": RoomStatus.VOTING.value, "current_round": 1})
    return room, player


class TestClaims:

    @pytest.mark.asyncio
    async def test_room_code_collision(self, store):
        room = await store.create_room(Room(room_code="abc234", host_id="user-0"))
        with pytest.raises(ConflictError) as exc:
            await store.create_room(Room(room_code="ABC234", host_id="user-1"))
        assert exc.value.code == "room_code_collision"
        assert (await store.get_room_by_code("abc234")).id == room.id

    @pytest.mark.asyncio
    async def test_names_that_are_not_valid_document_ids(self, store, db):
        names = ["AC/DC", ".", "..", "__x__"]
        for i, name in enumerate(names):
            await store.add_player(Player(room_id="r", user_id=f"user/{i}", name=name))

        assert sorted(p.name for p in await store.get_players("r")) == sorted(names)
        claim = db.collection("rooms").document("r").collection("names").document(claim_id("AC/DC"))
        assert claim.get().to_dict()["name"] == "AC/DC"

    @pytest.mark.asyncio
    async def test_duplicate_name_and_identity(self, store):
        await store.add_player(Player(room_id="r", user_id="user-0", name="AC/DC"))

        with pytest.raises(ConflictError) as exc:
            await store.add_player(Player(room_id="r", user_id="user-1", name="AC/DC"))
        assert exc.value.code == "duplicate_name"

        with pytest.raises(ConflictError) as exc:
            await store.add_player(Player(room_id="r", user_id="user-0", name="Bob"))
        assert exc.value.code == "already_joined"

        # Same identity and same name: still reported as already joined
        with pytest.raises(ConflictError) as exc:
            await store.add_player(Player(room_id="r", user_id="user-0", name="AC/DC"))
        assert exc.value.code == "already_joined"
        assert len(await store.get_players("r")) == 1

    @pytest.mark.asyncio
    async def test_lost_race_on_identity_claim(self, store, db):
        members = db.collection("rooms").document("r").collection("members")
        db.before_commit = lambda: members.document(claim_id("user-0")).create({"player_id": "other"})

        with pytest.raises(ConflictError) as exc:
            await store.add_player(Player(room_id="r", user_id="user-0", name="Ann"))
        assert exc.value.code == "already_joined"
        assert await store.get_players("r") == []

    @pytest.mark.asyncio
    async def test_lost_race_on_name_claim(self, store, db):
        names = db.collection("rooms").document("r").collection("names")
        db.before_commit = lambda: names.document(claim_id("Ann")).create({"player_id": "other"})

        with pytest.raises(ConflictError) as exc:
            await store.add_player(Player(room_id="r", user_id="user-0", name="Ann"))
        assert exc.value.code == "duplicate_name"

    @pytest.mark.asyncio
    async def test_remove_player_releases_claims(self, store):
        player = await store.add_player(Player(room_id="r", user_id="user-0", name=".."))
        await store.remove_player("r", player.id)

        assert await store.get_player("r", player.id) is None
        again = await store.add_player(Player(room_id="r", user_id="user-0", name=".."))
        assert [p.id for p in await store.get_players("r")] == [again.id]

    @pytest.mark.asyncio
    async def test_duplicate_vote(self, store):
        await store.insert_vote(Vote(room_id="r", round=1, voter_id="a", target_player_id="b"))
        with pytest.raises(ConflictError) as exc:
            await store.insert_vote(Vote(room_id="r", round=1, voter_id="a", target_player_id="c"))
        assert exc.value.code == "duplicate_vote"

        await store.insert_vote(Vote(room_id="r", round=2, voter_id="a", target_player_id="c"))
        assert [v.target_player_id for v in await store.get_votes("r", 1)] == ["b"]


class TestTransactions:

    @pytest.mark.asyncio
    async def test_begin_game_clears_previous_game(self, store):
        room, player = await voting_room(store)
        await store.insert_vote(Vote(room_id=room.id, round=1, voter_id=player.id, target_player_id=player.id))
        await store.commit_round(
            room.id, 1, VoteResult(room_id=room.id, round=1), expect_pending=False,
            player_updates={player.id: {"is_alive": False}},
        )

        await store.begin_game(room.id, [], {"status": RoomStatus.PLAYING.value, "current_round": 1})

        assert await store.get_votes(room.id, 1) == []
        assert await store.get_vote_results(room.id) == []
        assert (await store.get_player(room.id, player.id)).is_alive
        assert (await store.get_room(room.id)).status == RoomStatus.PLAYING

    @pytest.mark.asyncio
    async def test_second_commit_for_same_round_conflicts(self, store, db):
        room, player = await voting_room(store)
        first = VoteResult(room_id=room.id, round=1, eliminated_player_id=player.id)
        await store.commit_round(
            room.id, 1, first, expect_pending=False,
            player_updates={player.id: {"is_alive": False}},
        )
        commits = db.commits

        with pytest.raises(ConflictError) as exc:
            await store.commit_round(
                room.id, 1, VoteResult(room_id=room.id, round=1), expect_pending=False,
                room_updates={"status": RoomStatus.RESULT.value},
            )
        assert exc.value.code == "tally_in_progress"
        assert db.commits == commits
        assert (await store.get_vote_result(room.id, 1)).eliminated_player_id == player.id
        assert (await store.get_room(room.id)).status == RoomStatus.VOTING

    @pytest.mark.asyncio
    async def test_pending_result_is_finalised_once(self, store):
        room, player = await voting_room(store)
        pending = VoteResult(room_id=room.id, round=1, eliminated_player_id=player.id, awaiting_guess=True)
        await store.commit_round(room.id, 1, pending, expect_pending=False)

        with pytest.raises(ConflictError):
            await store.commit_round(room.id, 1, pending, expect_pending=False)

        final = VoteResult(room_id=room.id, round=1, eliminated_player_id=player.id, game_over=True)
        await store.commit_round(
            room.id, 1, final, expect_pending=True,
            room_updates={"status": RoomStatus.RESULT.value},
        )
        assert (await store.get_vote_result(room.id, 1)).game_over
        with pytest.raises(ConflictError):
            await store.commit_round(room.id, 1, final, expect_pending=True)


class TestGameOnFirestore:

    @pytest.mark.asyncio
    async def test_full_game(self, manager, store, started_game, eliminate, roles_of):
        room, _ = await started_game(4, undercover=1)
        target = (await roles_of(room.id))[Role.UNDERCOVER][0]

        result = await eliminate(room.id, target)

        assert result.outcome == TallyOutcome.GAME_OVER
        assert result.winner == Winner.CIVILIAN
        assert (await store.get_room(room.id)).status == RoomStatus.RESULT
        # A repeated tally replays the recorded outcome
        again = await manager.tally(room.id, "user-0")
        assert (again.outcome, again.eliminated_id) == (TallyOutcome.GAME_OVER, target)
        assert len(await store.get_vote_results(room.id)) == 1
