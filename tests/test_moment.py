"""Tests for the Moment, Post and ChatMessage domain objects."""

from datetime import timedelta
from uuid import uuid4

import pytest

from kindred_moments.domain.chat import ChatMessage
from kindred_moments.domain.enums import MediaType, MessageType, MomentState, Mood, ReactionType
from kindred_moments.domain.geo import GeoPoint
from kindred_moments.domain.moment import Moment
from kindred_moments.domain.post import MediaRef, Post
from kindred_moments.foundation.identifiers import is_valid_anonymous_id, new_anonymous_id

from tests.conftest import T0


def _moment() -> Moment:
    return Moment(GeoPoint(latitude=40.7128, longitude=-74.0060), name="Washington Square")


class TestMomentParticipants:
    def test_new_moment_is_active_but_not_live(self, clock) -> None:
        moment = _moment()
        assert moment.state == MomentState.ACTIVE
        assert moment.is_open()
        assert not moment.is_live
        assert moment.expires_at == T0 + timedelta(hours=24)

    def test_add_participant_is_idempotent(self, clock, alice) -> None:
        moment = _moment()
        assert moment.add_participant(alice) is True
        assert moment.add_participant(alice) is False
        assert moment.participant_count == 1
        assert moment.is_live

    def test_readd_refreshes_presence(self, clock, alice) -> None:
        moment = _moment()
        moment.add_participant(alice)
        clock.advance(minutes=10)
        moment.add_participant(alice)
        assert moment.participants[0].last_active_at == T0 + timedelta(minutes=10)
        assert moment.participants[0].joined_at == T0

    def test_peak_participants_survives_leaves(self, clock, alice, bob) -> None:
        moment = _moment()
        moment.add_participant(alice)
        moment.add_participant(bob)
        moment.remove_participant(alice)
        assert moment.participant_count == 1
        assert moment.peak_participants == 2

    def test_remove_absent_is_noop(self, clock, alice) -> None:
        assert _moment().remove_participant(alice) is False

    def test_prune_idle(self, clock, alice, bob) -> None:
        moment = _moment()
        moment.add_participant(alice)
        clock.advance(minutes=20)
        moment.add_participant(bob)
        clock.advance(minutes=15)
        removed = moment.prune_idle(clock.now - timedelta(minutes=30))
        assert removed == [alice]
        assert moment.is_participant(bob)


class TestMomentLifecycle:
    def test_window_closes_at_expires_at(self, clock) -> None:
        moment = _moment()
        clock.advance(hours=23, minutes=59)
        assert moment.is_open()
        clock.advance(minutes=1)
        assert not moment.is_open()
        assert moment.is_closed

    def test_snapshot_reports_expired_before_sweep(self, clock) -> None:
        moment = _moment()
        clock.advance(hours=25)
        assert moment.state == MomentState.ACTIVE
        assert moment.snapshot().state == MomentState.EXPIRED

    def test_advance_forward_only(self, clock) -> None:
        moment = _moment()
        assert moment.advance(MomentState.EXPIRED) is True
        assert moment.advance(MomentState.EXPIRED) is False
        assert moment.advance(MomentState.ARCHIVED) is True
        with pytest.raises(ValueError):
            moment.advance(MomentState.ACTIVE)

    def test_snapshot_fields(self, clock, alice) -> None:
        moment = _moment()
        moment.add_participant(alice)
        summary = moment.snapshot()
        assert summary.moment_id == moment.moment_id
        assert summary.location.name == "Washington Square"
        assert summary.participant_count == 1
        assert summary.is_live
        assert summary.mood_summary.total_votes == 0


class TestPost:
    def test_one_reaction_per_user(self, clock, alice) -> None:
        post = Post(uuid4(), alice, "sunset")
        assert post.react(alice, ReactionType.HEART) is None
        assert post.react(alice, ReactionType.SMILE) == ReactionType.HEART
        assert post.reaction_count == 1
        assert post.reaction_counts()["smile"] == 1
        assert post.reaction_counts()["heart"] == 0

    def test_unreact(self, clock, alice) -> None:
        post = Post(uuid4(), alice, "sunset")
        post.react(alice, ReactionType.GRATEFUL)
        assert post.unreact(alice) is True
        assert post.unreact(alice) is False

    def test_to_dict_hides_author(self, clock, alice) -> None:
        post = Post(uuid4(), alice, "sunset", mood=Mood.CALM)
        data = post.to_dict()
        assert data["mood"] == "calm"
        assert alice not in str(data)

    @pytest.mark.parametrize("url", ["https://x.test/a.png", "http://x.test/b.JPEG", "https://x.test/c.webp"])
    def test_media_accepts_images(self, url: str) -> None:
        assert MediaRef(url=url).media_type == MediaType.PHOTO

    @pytest.mark.parametrize("url", ["ftp://x.test/a.png", "https://x.test/a.txt", "not a url"])
    def test_media_rejects_non_images(self, url: str) -> None:
        with pytest.raises(ValueError):
            MediaRef(url=url)


class TestChatMessage:
    def test_expires_after_ttl(self, clock, alice) -> None:
        message = ChatMessage.create(uuid4(), "hi", author_id=alice)
        assert message.expires_at == T0 + timedelta(hours=24)
        assert not message.is_expired(T0 + timedelta(hours=23))
        assert message.is_expired(T0 + timedelta(hours=24))

    def test_socket_dict(self, clock) -> None:
        message = ChatMessage.create(uuid4(), "welcome", message_type=MessageType.SYSTEM)
        data = message.to_socket_dict()
        assert data["user_id"] is None
        assert data["message_type"] == "system"
        assert data["created_at"] == T0.isoformat()


class TestIdentifiers:
    def test_minted_ids_are_valid(self) -> None:
        assert is_valid_anonymous_id(new_anonymous_id())

    @pytest.mark.parametrize("value", [None, "", "anon_", "user_123", f"anon_{uuid4().hex}", 42])
    def test_invalid_ids(self, value) -> None:
        assert not is_valid_anonymous_id(value)
