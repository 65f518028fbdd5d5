import pytest

from app.models.notification_models import NotificationType


@pytest.mark.asyncio
async def test_create_and_list_newest_first(notifications):
    assert await notifications.create_notification("2", "Job Assigned", "first", NotificationType.JOB_ASSIGNED, "req-1")
    assert await notifications.create_notification("2", "Materials Ready", "second", NotificationType.MATERIALS_READY, "req-1")
    assert await notifications.create_notification("3", "Cost Approval Needed", "other user")

    feed = await notifications.get_user_notifications("2")

    assert [n.body for n in feed] == ["second", "first"]
    assert all(n.user_id == "2" and not n.read for n in feed)
    assert feed[0].request_id == "req-1"
    assert await notifications.get_unread_count("3") == 1


@pytest.mark.asyncio
async def test_feed_limit(notifications):
    for i in range(5):
        await notifications.create_notification("2", "Status Update", f"n{i}")

    assert len(await notifications.get_user_notifications("2", limit=3)) == 3


@pytest.mark.asyncio
async def test_mark_as_read_is_owner_only(notifications):
    await notifications.create_notification("2", "Job Assigned", "mine")
    [note] = await notifications.get_user_notifications("2")

    assert await notifications.mark_as_read("3", note.id) is False
    assert await notifications.get_unread_count("2") == 1

    assert await notifications.mark_as_read("2", note.id) is True
    [read] = await notifications.get_user_notifications("2")
    assert read.read is True
    assert read.read_at is not None
    assert await notifications.get_unread_notifications("2") == []


@pytest.mark.asyncio
async def test_mark_unknown_notification(notifications):
    assert await notifications.mark_as_read("2", "missing") is False


@pytest.mark.asyncio
async def test_mark_many_and_all(notifications):
    for i in range(3):
        await notifications.create_notification("2", "Status Update", f"n{i}")
    feed = await notifications.get_user_notifications("2")

    assert await notifications.mark_notifications_as_read("2", [feed[0].id, "missing"]) == 1
    assert await notifications.mark_all_as_read("2") == 2
    assert await notifications.get_unread_count("2") == 0


@pytest.mark.asyncio
async def test_create_failure_is_reported_not_raised(db, notifications):
    async def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    db.create_document = broken

    assert await notifications.create_notification("2", "Job Assigned", "lost") is False
