import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.email_history import (
    email_history_to_dict,
    get_email_history,
    get_email_history_by_recipient,
    get_recent_email_history,
    record_email_history,
)
from services.email_service import build_document_email, send_document_email, send_email
from shared.db import Base, EmailHistory


class EmailServiceTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _record(self, document_id, recipient, sent_at, status="sent"):
        return record_email_history(
            self.db,
            document_type="quote",
            document_id=document_id,
            recipient_email=recipient,
            subject=f"Quote {document_id}",
            status=status,
            sent_at=sent_at,
        )

    def test_history_queries_are_newest_first(self):
        base = datetime(2024, 5, 1, 8, 0, 0)
        self._record("q1", "a@example.com", base)
        self._record("q1", "b@example.com", base + timedelta(hours=2))
        self._record("q2", "a@example.com", base + timedelta(hours=1))
        self.db.commit()

        by_document = get_email_history(self.db, "quote", "q1")
        self.assertEqual([row.recipient_email for row in by_document], ["b@example.com", "a@example.com"])

        recent = get_recent_email_history(self.db, limit=2)
        self.assertEqual([row.document_id for row in recent], ["q1", "q2"])

        by_recipient = get_email_history_by_recipient(self.db, "a@example.com")
        self.assertEqual([row.document_id for row in by_recipient], ["q2", "q1"])

    def test_history_dict_shape(self):
        record = self._record("q9", "c@example.com", datetime(2024, 5, 2, 10, 0, 0))
        data = email_history_to_dict(record)
        self.assertEqual(data["documentId"], "q9")
        self.assertEqual(data["status"], "sent")
        self.assertEqual(data["lastUpdated"], data["sentAt"])
        self.assertIsNone(data["deliveredAt"])

    def test_send_without_api_key_logs_and_succeeds(self):
        with patch.dict(os.environ, {"RESEND_API_KEY": ""}):
            ok, email_id, error = send_email(to_email="x@example.com", subject="Hi", html="<p>Hi</p>")
        self.assertTrue(ok)
        self.assertIsNone(email_id)
        self.assertIsNone(error)

    @patch("services.email_service.requests.post")
    def test_send_document_email_records_provider_id(self, mock_post):
        response = MagicMock(status_code=200)
        response.json.return_value = {"id": "re_123"}
        mock_post.return_value = response
        with patch.dict(os.environ, {"RESEND_API_KEY": "re_test_key"}):
            record = send_document_email(
                self.db,
                to_email="billing@example.com",
                subject="Invoice INV-7",
                html="<p>Invoice</p>",
                document_type="invoice",
                document_id="inv_7",
                sent_by="1",
            )
        self.assertEqual(record.status, "sent")
        self.assertEqual(record.email_id, "re_123")
        self.assertEqual(self.db.query(EmailHistory).count(), 1)
        _, kwargs = mock_post.call_args
        self.assertEqual(kwargs["json"]["to"], ["billing@example.com"])
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer re_test_key")

    @patch("services.email_service.requests.post")
    def test_failed_send_is_recorded(self, mock_post):
        mock_post.return_value = MagicMock(status_code=422, text="invalid from address")
        with patch.dict(os.environ, {"RESEND_API_KEY": "re_test_key"}):
            record = send_document_email(
                self.db,
                to_email="billing@example.com",
                subject="Invoice INV-8",
                html="<p>Invoice</p>",
                document_type="invoice",
                document_id="inv_8",
            )
        self.assertEqual(record.status, "failed")
        self.assertIsNone(record.email_id)
        self.assertIn("422", record.error_message)

    @patch("services.email_service.requests.post", side_effect=requests.ConnectionError("offline"))
    def test_network_error_is_reported(self, _mock_post):
        with patch.dict(os.environ, {"RESEND_API_KEY": "re_test_key"}):
            ok, email_id, error = send_email(to_email="x@example.com", subject="Hi", html="<p>Hi</p>")
        self.assertFalse(ok)
        self.assertIsNone(email_id)
        self.assertIn("offline", error)

    def test_document_email_template(self):
        subject, html = build_document_email(
            document_type="workOrder",
            document_number="WO-0012",
            message="Technician arrives <9am>",
            pdf_url="https://files.example.com/wo-12.pdf",
            business_name="Acme Doors",
        )
        self.assertEqual(subject, "Work Order WO-0012 from Acme Doors")
        self.assertIn("https://files.example.com/wo-12.pdf", html)
        self.assertIn("&lt;9am&gt;", html)


if __name__ == "__main__":
    unittest.main()
