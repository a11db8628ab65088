from datetime import datetime, timezone

import pytest

from chatcore.domain.conversations import exceptions, models, policy
from chatcore.domain.conversations.models import ConversationKey, ParticipantRole


def _conversation(kind: models.ConversationType) -> models.Conversation:
    now = datetime.now(timezone.utc)
    return models.Conversation(id="c1", type=kind, created_by="alice", created_at=now, updated_at=now)


@pytest.mark.parametrize(
    "first,second,expected",
    [
        ("bob", "alice", "dm_alice_bob"),
        ("alice", "bob", "dm_alice_bob"),
        ("user-10", "user-9", "dm_user-10_user-9"),
    ],
)
def test_conversation_key_is_order_independent(first, second, expected):
    key = ConversationKey.from_participants(first, second)
    assert key.conversation_id == expected
    assert key == ConversationKey.from_participants(second, first)


@pytest.mark.parametrize(
    "role,manage,update,owner",
    [
        (ParticipantRole.OWNER, True, True, True),
        (ParticipantRole.ADMIN, True, True, False),
        (ParticipantRole.MEMBER, False, False, False),
        (None, False, False, False),
    ],
)
def test_role_checks_follow_rank(role, manage, update, owner):
    assert policy.can_manage_participants(role) is manage
    assert policy.can_update_settings(role) is update
    assert policy.is_owner(role) is owner


def test_inactive_participant_has_no_role():
    participant = models.Participant(
        conversation_id="c1",
        user_id="alice",
        role=ParticipantRole.OWNER,
        is_active=True,
        joined_at=datetime.now(timezone.utc),
    )
    assert policy.active_role(participant) is ParticipantRole.OWNER
    participant.deactivate()
    assert policy.active_role(participant) is None
    assert policy.active_role(None) is None


def test_ensure_can_delete():
    group = _conversation(models.ConversationType.GROUP)
    direct = _conversation(models.ConversationType.DIRECT)

    policy.ensure_can_delete(group, ParticipantRole.OWNER)
    policy.ensure_can_delete(direct, ParticipantRole.MEMBER)
    with pytest.raises(exceptions.ForbiddenError):
        policy.ensure_can_delete(group, ParticipantRole.ADMIN)
    with pytest.raises(exceptions.ForbiddenError):
        policy.ensure_can_delete(direct, None)


def test_error_message_includes_identifier():
    error = exceptions.UserNotFoundError(identifier="zed")
    assert error.detail == "user_not_found"
    assert str(error) == "user_not_found: zed"
    assert exceptions.ConversationConflictError().status_code == 409


def test_manager_roles_are_owner_and_admin():
    assert policy.MANAGER_ROLES == {ParticipantRole.OWNER, ParticipantRole.ADMIN}
    assert all(policy.can_manage_participants(role) for role in policy.MANAGER_ROLES)
