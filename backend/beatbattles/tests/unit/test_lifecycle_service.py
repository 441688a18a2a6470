import asyncio
import random
from datetime import timedelta

import pytest

from beatbattles.rooms.errors import RoomError, RoomErrorKind, RoomGone
from beatbattles.rooms.models import ConnectionState, RoomPhase, RoomState
from beatbattles.rooms.repository import RoomRepository
from beatbattles.rooms.service import THEMES, RoomLifecycleService, pick_host
from beatbattles.tests.helpers.rooms import create_room_with, make_user


class TestCreateRoom:
    async def test_host_is_sole_member(self, service):
        room = await service.create_room(make_user("host", "Hana"), capacity=4)

        assert room.status == RoomPhase.WAITING
        assert room.host_id == "host"
        assert room.member_ids == ["host"]
        assert room.members[0].display_name == "Hana"
        assert room.members[0].connection_state == ConnectionState.CONNECTED
        assert room.capacity == 4
        assert room.theme is None
        assert room.display_code == f"{room.code[:3]} {room.code[3:]}"

    async def test_default_capacity(self, service):
        room = await service.create_room(make_user("host"))
        assert room.capacity == 10

    async def test_room_resolvable_by_code_and_id(self, service):
        room = await service.create_room(make_user("host"))
        assert service.find_room(room.code).id == room.id
        assert service.get_room(room.id).code == room.code

    @pytest.mark.parametrize("capacity", [0, -3])
    async def test_non_positive_capacity_raises(self, service, capacity):
        with pytest.raises(ValueError, match="capacity"):
            await service.create_room(make_user("host"), capacity=capacity)
        assert service.room_count == 0

    async def test_code_collision_regenerates(self):
        codes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
        service = RoomLifecycleService(RoomRepository(), code_generator=lambda: next(codes))

        first = await service.create_room(make_user("h1"))
        second = await service.create_room(make_user("h2"))

        assert first.code == "AAAAAA"
        assert second.code == "BBBBBB"

    async def test_live_codes_are_unique(self, service):
        rooms = [await service.create_room(make_user(f"h{i}")) for i in range(50)]
        assert len({r.code for r in rooms}) == 50

    async def test_snapshot_is_detached_from_record(self, service, repository):
        room = await service.create_room(make_user("host"))
        repository.find_by_id(room.id).members.append(make_user("ghost"))

        assert room.member_ids == ["host"]


class TestJoinRoom:
    async def test_join_appends_member(self, service):
        """Create with capacity 4, then join: members are host then joiner, still waiting."""
        room = await service.create_room(make_user("host"), capacity=4)
        result = await service.join_room(room.code, make_user("p1"))

        assert isinstance(result, RoomState)
        assert result.member_ids == ["host", "p1"]
        assert result.status == RoomPhase.WAITING

    async def test_unknown_code(self, service):
        result = await service.join_room("ZZZZZZ", make_user("p1"))
        assert isinstance(result, RoomError)
        assert result.kind == RoomErrorKind.NOT_FOUND

    async def test_malformed_code(self, service):
        await service.create_room(make_user("host"))
        result = await service.join_room("not a code", make_user("p1"))
        assert isinstance(result, RoomError)
        assert result.kind == RoomErrorKind.NOT_FOUND

    async def test_full_room_rejected(self, service):
        room = await service.create_room(make_user("host"), capacity=1)
        result = await service.join_room(room.code, make_user("p1"))

        assert isinstance(result, RoomError)
        assert result.kind == RoomErrorKind.ROOM_FULL
        assert service.find_room(room.code).member_ids == ["host"]

    async def test_started_room_rejected(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")

        result = await service.join_room(room.code, make_user("p2"))
        assert result.kind == RoomErrorKind.WRONG_PHASE

    async def test_full_checked_before_phase(self, service):
        room = await create_room_with(service, "host", "p1", capacity=2)
        await service.start_game(room.code, "host")

        result = await service.join_room(room.code, make_user("p2"))
        assert result.kind == RoomErrorKind.ROOM_FULL

    async def test_rejoin_updates_in_place(self, service):
        room = await create_room_with(service, "host", "p1")
        result = await service.join_room(room.code, make_user("p1", "Renamed", connection_id="conn-new"))

        assert result.member_ids == ["host", "p1"]
        assert result.members[1].display_name == "Renamed"
        assert result.revision > room.revision

    async def test_rejoin_marks_member_connected(self, service, repository):
        room = await create_room_with(service, "host", "p1")
        await service.update_connection(room.id, "p1", connected=False)

        await service.join_room(room.code, make_user("p1", connection_id="conn-2"))
        member = repository.find_by_id(room.id).member("p1")
        assert member.is_connected
        assert member.connection_id == "conn-2"
        assert member.disconnected_at is None

    async def test_member_rejoins_started_game(self, service, repository):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")
        await service.update_connection(room.id, "p1", connected=False)

        result = await service.join_room(room.code, make_user("p1", connection_id="conn-2"))

        assert result.status == RoomPhase.COMPOSING
        assert result.member_ids == ["host", "p1"]
        assert repository.find_by_id(room.id).member("p1").is_connected

    async def test_member_rejoins_full_room(self, service):
        room = await create_room_with(service, "host", "p1", capacity=2)
        await service.update_connection(room.id, "p1", connected=False)

        result = await service.join_room(room.code, make_user("p1", connection_id="conn-2"))

        assert isinstance(result, RoomState)
        assert result.member_ids == ["host", "p1"]

    async def test_concurrent_joins_never_exceed_capacity(self, service):
        room = await service.create_room(make_user("host"), capacity=3)

        results = await asyncio.gather(*(service.join_room(room.code, make_user(f"p{i}")) for i in range(10)))

        joined = [r for r in results if isinstance(r, RoomState)]
        rejected = [r for r in results if isinstance(r, RoomError)]
        assert len(joined) == 2
        assert all(r.kind == RoomErrorKind.ROOM_FULL for r in rejected)
        assert len(service.find_room(room.code).members) == 3


class TestLeaveRoom:
    async def test_host_leaving_passes_host(self, service):
        room = await create_room_with(service, "host", "p1")
        result = await service.leave_room(room.code, "host")

        assert result.host_id == "p1"
        assert result.member_ids == ["p1"]

    async def test_last_member_destroys_room(self, service):
        room = await service.create_room(make_user("host"))
        result = await service.leave_room(room.code, "host")

        assert result == RoomGone(room_id=room.id, code=room.code)
        assert service.find_room(room.code) is None
        assert service.get_room(room.id) is None
        assert service.room_count == 0

    async def test_non_host_leaving_keeps_host(self, service):
        room = await create_room_with(service, "host", "p1", "p2")
        result = await service.leave_room(room.code, "p1")

        assert result.host_id == "host"
        assert result.member_ids == ["host", "p2"]

    async def test_non_member_is_noop(self, service):
        room = await create_room_with(service, "host", "p1")
        result = await service.leave_room(room.code, "stranger")

        assert isinstance(result, RoomState)
        assert result.member_ids == ["host", "p1"]
        assert result.revision == room.revision

    async def test_unknown_code(self, service):
        result = await service.leave_room("ZZZZZZ", "host")
        assert result.kind == RoomErrorKind.NOT_FOUND

    async def test_host_passes_to_first_connected_member(self, service):
        room = await create_room_with(service, "host", "p1", "p2")
        await service.update_connection(room.id, "p1", connected=False)

        result = await service.leave_room(room.code, "host")
        assert result.host_id == "p2"

    async def test_host_falls_back_to_first_member_when_none_connected(self, service):
        room = await create_room_with(service, "host", "p1", "p2")
        await service.update_connection(room.id, "p1", connected=False)
        await service.update_connection(room.id, "p2", connected=False)

        result = await service.leave_room(room.code, "host")
        assert result.host_id == "p1"

    async def test_concurrent_leaves_destroy_exactly_once(self, service):
        room = await create_room_with(service, "host", "p1", "p2", "p3")

        results = await asyncio.gather(*(service.leave_room(room.code, uid) for uid in room.member_ids))

        assert sum(isinstance(r, RoomGone) for r in results) == 1
        assert service.room_count == 0

    async def test_old_code_can_be_reused_after_destroy(self):
        codes = iter(["AAAAAA", "AAAAAA"])
        service = RoomLifecycleService(RoomRepository(), code_generator=lambda: next(codes))
        first = await service.create_room(make_user("h1"))
        await service.leave_room(first.code, "h1")

        second = await service.create_room(make_user("h2"))
        assert second.code == "AAAAAA"
        assert second.id != first.id


class TestStartGame:
    async def test_only_host_can_start(self, service):
        room = await create_room_with(service, "host", "p1")

        denied = await service.start_game(room.code, "p1")
        assert denied.kind == RoomErrorKind.NOT_AUTHORIZED

        started = await service.start_game(room.code, "host")
        assert started.status == RoomPhase.COMPOSING
        assert started.theme in THEMES

    async def test_needs_two_players(self, service):
        room = await service.create_room(make_user("host"))
        result = await service.start_game(room.code, "host")

        assert result.kind == RoomErrorKind.INSUFFICIENT_PLAYERS
        assert service.find_room(room.code).status == RoomPhase.WAITING

    async def test_cannot_start_twice(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")

        result = await service.start_game(room.code, "host")
        assert result.kind == RoomErrorKind.WRONG_PHASE

    async def test_unknown_code(self, service):
        result = await service.start_game("ZZZZZZ", "host")
        assert result.kind == RoomErrorKind.NOT_FOUND

    async def test_theme_follows_rng(self, repository):
        service = RoomLifecycleService(repository, rng=random.Random(5), code_generator=lambda: "ABCDEF")
        room = await create_room_with(service, "host", "p1")

        started = await service.start_game(room.code, "host")
        assert started.theme == random.Random(5).choice(THEMES)


class TestAdvancePhase:
    async def test_walks_forward_one_step_at_a_time(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")

        voting = await service.advance_phase(room.id, RoomPhase.VOTING)
        assert voting.status == RoomPhase.VOTING
        results = await service.advance_phase(room.id, RoomPhase.RESULTS)
        assert results.status == RoomPhase.RESULTS

    @pytest.mark.parametrize("target", [RoomPhase.WAITING, RoomPhase.VOTING, RoomPhase.RESULTS])
    async def test_rejects_anything_but_the_next_phase(self, service, target):
        room = await create_room_with(service, "host", "p1")

        result = await service.advance_phase(room.id, target)
        assert result.kind == RoomErrorKind.WRONG_PHASE
        assert service.get_room(room.id).status == RoomPhase.WAITING

    async def test_never_regresses(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")

        result = await service.advance_phase(room.id, RoomPhase.WAITING)
        assert result.kind == RoomErrorKind.WRONG_PHASE
        assert service.get_room(room.id).status == RoomPhase.COMPOSING

    async def test_results_is_terminal(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.start_game(room.code, "host")
        await service.advance_phase(room.id, RoomPhase.VOTING)
        await service.advance_phase(room.id, RoomPhase.RESULTS)

        for phase in RoomPhase:
            result = await service.advance_phase(room.id, phase)
            assert result.kind == RoomErrorKind.WRONG_PHASE

    async def test_entering_composing_assigns_theme(self, service):
        room = await create_room_with(service, "host", "p1")
        result = await service.advance_phase(room.id, RoomPhase.COMPOSING)

        assert result.theme in THEMES

    async def test_unknown_room(self, service):
        result = await service.advance_phase("missing", RoomPhase.COMPOSING)
        assert result.kind == RoomErrorKind.NOT_FOUND


class TestUpdateConnection:
    async def test_disconnect_clears_handle(self, service, repository):
        room = await create_room_with(service, "host", "p1")
        result = await service.update_connection(room.id, "p1", connected=False)

        assert result.members[1].connection_state == ConnectionState.DISCONNECTED
        member = repository.find_by_id(room.id).member("p1")
        assert member.connection_id is None
        assert member.disconnected_at is not None

    async def test_reconnect_sets_handle(self, service, repository):
        room = await create_room_with(service, "host", "p1")
        await service.update_connection(room.id, "p1", connected=False)
        result = await service.update_connection(room.id, "p1", connected=True, connection_id="conn-9")

        assert result.members[1].connection_state == ConnectionState.CONNECTED
        assert repository.find_by_id(room.id).member("p1").connection_id == "conn-9"

    async def test_unknown_room_or_user_is_noop(self, service):
        room = await service.create_room(make_user("host"))

        assert await service.update_connection("missing", "host", connected=False) is None
        assert await service.update_connection(room.id, "stranger", connected=False) is None
        assert service.get_room(room.id).revision == room.revision


class TestReapIdle:
    async def test_removes_disconnected_members(self, service):
        room = await create_room_with(service, "host", "p1", "p2")
        await service.update_connection(room.id, "p1", connected=False)

        outcomes = await service.reap_idle()

        assert len(outcomes) == 1
        assert outcomes[0].member_ids == ["host", "p2"]

    async def test_respects_grace_period(self, service, repository):
        room = await create_room_with(service, "host", "p1")
        await service.update_connection(room.id, "p1", connected=False)

        assert await service.reap_idle(grace_seconds=60) == []

        repository.find_by_id(room.id).member("p1").disconnected_at -= 120
        outcomes = await service.reap_idle(grace_seconds=60)
        assert outcomes[0].member_ids == ["host"]

    async def test_reassigns_host(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.update_connection(room.id, "host", connected=False)

        outcomes = await service.reap_idle()
        assert outcomes[0].host_id == "p1"

    async def test_destroys_room_when_everyone_idle(self, service):
        room = await create_room_with(service, "host", "p1")
        await service.update_connection(room.id, "host", connected=False)
        await service.update_connection(room.id, "p1", connected=False)

        outcomes = await service.reap_idle()

        assert outcomes == [RoomGone(room_id=room.id, code=room.code)]
        assert service.find_room(room.code) is None

    async def test_connected_rooms_untouched(self, service):
        room = await create_room_with(service, "host", "p1")

        assert await service.reap_idle() == []
        assert service.get_room(room.id).revision == room.revision


class TestQueries:
    async def test_available_rooms_newest_first(self, service, repository):
        older = await service.create_room(make_user("h1"))
        newer = await service.create_room(make_user("h2"))
        repository.find_by_id(older.id).created_at -= timedelta(minutes=5)

        assert [r.id for r in service.list_available_rooms()] == [newer.id, older.id]

    async def test_available_rooms_skip_full_and_started(self, service):
        open_room = await service.create_room(make_user("h1"))
        await service.create_room(make_user("h2"), capacity=1)
        started = await create_room_with(service, "h3", "p3")
        await service.start_game(started.code, "h3")

        assert [r.id for r in service.list_available_rooms()] == [open_room.id]

    async def test_game_state_for_started_room(self, service):
        room = await create_room_with(service, "host", "p1")
        started = await service.start_game(room.code, "host")

        view = service.get_game_state(room.id)
        assert view.status == RoomPhase.COMPOSING
        assert view.theme == started.theme
        assert view.time_remaining == 300

    async def test_game_state_unknown_room(self, service):
        assert service.get_game_state("missing") is None


class TestRevision:
    async def test_every_accepted_mutation_bumps_revision(self, service):
        room = await service.create_room(make_user("host"))
        revisions = [room.revision]

        revisions.append((await service.join_room(room.code, make_user("p1"))).revision)
        revisions.append((await service.update_connection(room.id, "p1", connected=False)).revision)
        revisions.append((await service.join_room(room.code, make_user("p1"))).revision)
        revisions.append((await service.start_game(room.code, "host")).revision)
        revisions.append((await service.leave_room(room.code, "p1")).revision)

        assert revisions == sorted(set(revisions))

    async def test_rejected_operation_leaves_revision(self, service):
        room = await service.create_room(make_user("host"))
        await service.start_game(room.code, "host")

        assert service.get_room(room.id).revision == room.revision


class TestPickHost:
    def test_prefers_connected(self):
        first = make_user("a")
        first.mark_disconnected()
        assert pick_host([first, make_user("b")]).id == "b"

    def test_falls_back_to_first(self):
        members = [make_user("a"), make_user("b")]
        for member in members:
            member.mark_disconnected()
        assert pick_host(members).id == "a"
