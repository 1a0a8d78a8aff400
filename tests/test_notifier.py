import unittest
from unittest.mock import MagicMock, patch

import requests

from reportcards.services.notifier import NotifierError, WorkflowNotifier


class WorkflowNotifierTests(unittest.TestCase):
    def setUp(self):
        self.notifier = WorkflowNotifier("https://school.example/api/notify", timeout=5)

    @patch("reportcards.services.notifier.requests.post")
    def test_send_posts_payload(self, post):
        post.return_value = MagicMock(status_code=201)
        self.notifier.send("Report cards submitted", "JSS1 Mathematics", metadata={"subject": "Mathematics"})

        post.assert_called_once()
        self.assertEqual(post.call_args.args[0], "https://school.example/api/notify")
        self.assertEqual(post.call_args.kwargs["timeout"], 5)
        payload = post.call_args.kwargs["json"]
        self.assertEqual(payload["title"], "Report cards submitted")
        self.assertEqual(payload["audience"], ["admin", "super-admin"])
        self.assertEqual(payload["category"], "academic")
        self.assertEqual(payload["metadata"], {"subject": "Mathematics"})

    @patch("reportcards.services.notifier.requests.post")
    def test_network_failure(self, post):
        post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(NotifierError) as ctx:
            self.notifier.send("t", "m")
        self.assertEqual(str(ctx.exception), "NOTIFICATION_SERVICE_UNAVAILABLE")

    @patch("reportcards.services.notifier.requests.post")
    def test_rejected_by_endpoint(self, post):
        post.return_value = MagicMock(status_code=500)
        with self.assertRaises(NotifierError):
            self.notifier.send("t", "m")

    @patch("reportcards.services.notifier.requests.post")
    def test_broadcast_logs_instead_of_raising(self, post):
        post.side_effect = requests.Timeout("slow")
        with self.assertLogs("reportcards.services.notifier", level="WARNING"):
            self.assertFalse(self.notifier.broadcast("t", "m", kind="warning"))

    @patch("reportcards.services.notifier.requests.post")
    def test_disabled_without_url(self, post):
        notifier = WorkflowNotifier("  ")
        self.assertFalse(notifier.enabled)
        self.assertTrue(notifier.broadcast("t", "m"))
        post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
