import unittest

from chatsync.direct import DirectMessages
from chatsync.errors import ValidationError
from chatsync.invites import Fanout, unread_count
from chatsync.memory import InMemoryStore
from chatsync.models import INVITE, MESSAGE
from chatsync.presence import PresenceTracker

from .store_util import FakeClock


class FanoutTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(now_func=self.clock.now)
        self.conn_a = self.store.connect()
        self.conn_b = self.store.connect()
        await PresenceTracker(self.conn_a).signup("ua", "a@x.com")
        await PresenceTracker(self.conn_b).signup("ub", "b@x.com")

    async def test_invite_scenario(self):
        notifications = await Fanout(self.conn_b).watch_notifications("b@x.com")

        invite_id = await Fanout(self.conn_a).invite("a@x.com", "b@x.com")

        found = await notifications.wait_until(lambda items: len(items) == 1, timeout=1)
        self.assertEqual((found[0].type, found[0].sender, found[0].read), (INVITE, "a@x.com", False))
        self.assertEqual(found[0].summary, "a@x.com invited you to chat")
        invitations = await Fanout(self.conn_b).invitations_for("b@x.com")
        self.assertEqual([(i.id, i.sender, i.recipient_key) for i in invitations], [(invite_id, "a@x.com", "b@x_com")])

        contacts_a = await DirectMessages(self.conn_a).list_eligible_contacts("a@x.com")
        contacts_b = await DirectMessages(self.conn_b).list_eligible_contacts("b@x.com")
        self.assertEqual([u.email for u in contacts_a], ["b@x.com"])
        self.assertEqual([u.email for u in contacts_b], ["a@x.com"])
        await notifications.close()

    async def test_repeated_invites_accumulate(self):
        fanout = Fanout(self.conn_a)
        await fanout.invite("a@x.com", "b@x.com")
        await fanout.invite("a@x.com", "b@x.com")
        await Fanout(self.conn_b).invite("b@x.com", "a@x.com")

        self.assertEqual(len(await fanout.invitations_for("b@x.com")), 2)
        self.assertEqual(len(await fanout.invitations_for("a@x.com")), 1)
        self.assertEqual(len(self.store.read("notifications/b@x_com")), 2)

    async def test_notifications_are_newest_first_and_clearable(self):
        fanout = Fanout(self.conn_a)
        first = await fanout.notify("b@x.com", MESSAGE, "a@x.com", room_id="r1", room_name="Lobby")
        self.clock.advance(1)
        second = await fanout.notify("b@x.com", INVITE, "c@x.com")
        view = await Fanout(self.conn_b).watch_notifications("b@x.com")

        self.assertEqual([n.id for n in view.value], [second, first])
        self.assertEqual(unread_count(view.value), 2)
        self.assertEqual(view.value[1].room_name, "Lobby")

        await Fanout(self.conn_b).clear_one("b@x.com", second)
        remaining = await view.wait_until(lambda items: len(items) == 1, timeout=1)
        self.assertEqual(remaining[0].id, first)

        await Fanout(self.conn_b).clear_all("b@x.com")
        self.assertEqual(await view.wait_until(lambda items: items == [], timeout=1), [])
        self.assertIsNone(self.store.read("notifications"))
        await view.close()

    async def test_unknown_notification_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            await Fanout(self.conn_a).notify("b@x.com", "like", "a@x.com")
        with self.assertRaises(ValidationError):
            await Fanout(self.conn_a).invite("a@x.com", "")


if __name__ == "__main__":
    unittest.main()
