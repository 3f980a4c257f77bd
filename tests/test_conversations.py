from datetime import datetime, timedelta
from types import SimpleNamespace

from classifieds.conversations import conversation_key, group_conversations

A = SimpleNamespace(id=1, name="Alice")
B = SimpleNamespace(id=2, name="Bob")
C = SimpleNamespace(id=3, name="Carol")
NOW = datetime(2024, 5, 1, 12, 0)


def message(id, sender, receiver, minutes_ago, ad=None):
    return SimpleNamespace(
        id=id,
        sender_id=sender.id,
        receiver_id=receiver.id,
        sender=sender,
        receiver=receiver,
        ad=ad,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


def test_conversation_key_is_order_independent():
    assert conversation_key(1, 2) == conversation_key(2, 1) == "1-2"
    assert conversation_key(10, 9) == "9-10"


def test_no_messages_yields_no_conversations():
    assert group_conversations([], A.id) == []


def test_messages_between_same_pair_collapse_to_newest():
    t3 = message(3, A, B, 1)
    t2 = message(2, B, A, 2)
    t1 = message(1, A, B, 3)

    conversations = group_conversations([t3, t2, t1], A.id)

    assert len(conversations) == 1
    assert conversations[0].key == "1-2"
    assert conversations[0].last_message is t3
    assert conversations[0].other_user is B


def test_other_user_is_sender_for_received_messages():
    received = message(1, B, A, 1)
    conversations = group_conversations([received], A.id)
    assert conversations[0].other_user is B

    conversations = group_conversations([received], B.id)
    assert conversations[0].other_user is A


def test_conversations_keep_most_recent_activity_first():
    newest_with_c = message(4, C, A, 1)
    with_b = message(3, A, B, 5)
    older_with_c = message(2, A, C, 10)

    conversations = group_conversations([newest_with_c, with_b, older_with_c], A.id)

    assert [c.key for c in conversations] == ["1-3", "1-2"]
    assert conversations[0].last_message is newest_with_c


def test_ad_is_taken_from_first_sighting_and_threads_merge_across_ads():
    bike = SimpleNamespace(id=7, title="Bike")
    sofa = SimpleNamespace(id=8, title="Sofa")

    conversations = group_conversations(
        [message(2, B, A, 1, ad=sofa), message(1, A, B, 2, ad=bike)], A.id
    )

    assert len(conversations) == 1
    assert conversations[0].ad is sofa
