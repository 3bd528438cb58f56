import unittest

from chatsync import paths
from chatsync.direct import channel_id


class PathTests(unittest.TestCase):
    def test_channel_id_is_order_independent(self):
        pairs = [
            ("a@x.com", "b@x.com"),
            ("zed@y.org", "amy@y.org"),
            ("same@x.com", "same@x.com"),
            ("a#b@x.com", "c$d@x.com"),
        ]
        for a, b in pairs:
            with self.subTest(a=a, b=b):
                self.assertEqual(channel_id(a, b), channel_id(b, a))

    def test_channel_id_sanitizes_every_forbidden_character(self):
        self.assertEqual(channel_id("b@x.com", "a@x.com"), "a@x_com_b@x_com")
        self.assertEqual(channel_id("a[1]@x.com", "b#2$@y.co.uk"), "a_1_@x_com_b_2_@y_co_uk")

    def test_channel_id_collides_for_handles_differing_by_stripped_characters(self):
        self.assertEqual(channel_id("a.b@x.com", "c@x.com"), channel_id("a_b@x.com", "c@x.com"))

    def test_recipient_key_replaces_only_first_dot(self):
        self.assertEqual(paths.recipient_key("b@x.com"), "b@x_com")
        self.assertEqual(paths.recipient_key("first.last@mail.co.uk"), "first_last@mail.co.uk")
        self.assertEqual(paths.recipient_key("nodots"), "nodots")

    def test_validate_rejects_forbidden_characters(self):
        self.assertEqual(paths.validate("/rooms//r1/"), ["rooms", "r1"])
        for bad in ("users/a.b", "rooms/#1", "x/$y", "a[0]"):
            with self.subTest(path=bad):
                with self.assertRaises(paths.InvalidPath):
                    paths.validate(bad)

    def test_is_related_matches_ancestors_and_descendants(self):
        self.assertTrue(paths.is_related("rooms", "rooms/r1/messages"))
        self.assertTrue(paths.is_related("rooms/r1/messages", "rooms"))
        self.assertTrue(paths.is_related("", "users/u1"))
        self.assertFalse(paths.is_related("rooms/r1", "rooms/r2"))
        self.assertFalse(paths.is_related("rooms/r1", "rooms/r10"))

    def test_builders(self):
        self.assertEqual(paths.room_member("r1", "u1"), "rooms/r1/members/u1")
        self.assertEqual(paths.direct_messages("a_b"), "direct_messages/a_b/messages")
        self.assertEqual(paths.invites("b@x.com"), "direct_message_invites/b@x_com")
        self.assertEqual(paths.notification("b@x.com", "n1"), "notifications/b@x_com/n1")
        self.assertEqual(paths.join("rooms/", "/r1", "members"), "rooms/r1/members")


if __name__ == "__main__":
    unittest.main()
