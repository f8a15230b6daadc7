"""
Integration tests for operator notifications.
"""

from datetime import timedelta

from newsdesk.models import SystemNotification, utcnow
from newsdesk.services.notifications import (
    AUTOMATION_FAILED, cleanup_old_notifications, create_notification, delete_notification,
    get_notifications, get_unread_count, mark_all_as_read, mark_as_read,
)
from tests.fixtures import sample_data


def _add(db_session, count=1, **kwargs):
    ids = []
    for idx in range(count):
        notification = sample_data.create_notification(
            title=f"إشعار {idx}",
            created_at=kwargs.pop('created_at', None) or utcnow() - timedelta(minutes=count - idx),
            **kwargs
        )
        db_session.add(notification)
        db_session.flush()
        ids.append(notification.id)
    db_session.commit()
    return ids


class TestCreateNotification:

    def test_standalone_commit(self, db_session):
        notification_id = create_notification(
            AUTOMATION_FAILED, 'فشل', 'تفاصيل', data={'queue_id': 'abc'},
        )

        stored = db_session.get(SystemNotification, notification_id)
        assert stored.type == AUTOMATION_FAILED
        assert stored.data == {'queue_id': 'abc'}
        assert stored.is_read is False

    def test_joins_caller_transaction(self, db_session):
        create_notification(AUTOMATION_FAILED, 'فشل', 'تفاصيل', session=db_session)
        db_session.rollback()

        assert db_session.query(SystemNotification).count() == 0


class TestReadState:

    def test_unread_count_and_mark_as_read(self, db_session):
        ids = _add(db_session, count=3)

        assert get_unread_count() == 3
        assert mark_as_read(ids[0]) is True
        assert get_unread_count() == 2

    def test_mark_unknown(self):
        assert mark_as_read("not-a-uuid") is False
        assert mark_as_read("00000000-0000-0000-0000-000000000000") is False

    def test_mark_all_as_read(self, db_session):
        _add(db_session, count=2)

        assert mark_all_as_read() == 2
        assert get_unread_count() == 0
        assert mark_all_as_read() == 0


class TestListing:

    def test_newest_first_with_pagination(self, db_session):
        _add(db_session, count=3)

        result = get_notifications(page=1, per_page=2)

        assert [n['title'] for n in result['data']] == ["إشعار 2", "إشعار 1"]
        assert result['meta'] == {'current_page': 1, 'total_pages': 2, 'total_items': 3, 'per_page': 2}
        assert result['data'][0]['created_at'].endswith('+00:00')

    def test_unread_only(self, db_session):
        ids = _add(db_session, count=2)
        mark_as_read(ids[1])

        result = get_notifications(unread_only=True)

        assert result['meta']['total_items'] == 1
        assert result['data'][0]['id'] == str(ids[0])


class TestRemoval:

    def test_delete(self, db_session):
        ids = _add(db_session)

        assert delete_notification(ids[0]) is True
        assert delete_notification(ids[0]) is False

    def test_cleanup_removes_only_old_read_notifications(self, db_session):
        old = utcnow() - timedelta(days=31)
        _add(db_session, is_read=True, created_at=old)
        _add(db_session, is_read=False, created_at=old)
        _add(db_session, is_read=True)

        assert cleanup_old_notifications(30) == 1
        assert db_session.query(SystemNotification).count() == 2
