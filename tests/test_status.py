"""Tests for the status taxonomy and its HTTP mapping."""
from ReceiptTracker.status import status
from tests.base import BaseTestCase


class StatusTests(BaseTestCase):

    def test_every_status_has_message_and_code(self):
        for s in status.Status:
            self.assertIn(s, status.STATUS_MESSAGE)
            self.assertIn(s, status.HTTP_STATUS)

    def test_message_includes_detail(self):
        ex = status.NotFoundError('No receipt with id "r1".')
        self.assertEqual(ex.detail, 'No receipt with id "r1".')
        self.assertIn('No receipt with id "r1".', str(ex))
        self.assertTrue(str(ex).startswith(status.get_message(status.Status.NotFound)))

    def test_message_without_detail(self):
        ex = status.ClientSecretNotFoundError()
        self.assertEqual(str(ex), status.get_message(status.Status.ClientSecretNotFound))
        self.assertEqual(ex.detail, '')

    def test_error_response_codes(self):
        cases = (
            (status.ValidationError('bad'), 400),
            (status.AuthError('signed out'), 401),
            (status.NotFoundError('gone'), 404),
            (status.RemoteError('down'), 502),
            (status.StorageError('disk'), 500),
            (status.ClientSecretNotFoundError(), 500),
        )
        for ex, code in cases:
            with self.subTest(ex=type(ex).__name__):
                http_status, body = status.error_response(ex)
                self.assertEqual(http_status, code)
                self.assertEqual(body, {'error': str(ex)})

    def test_unexpected_exception_is_generic_500(self):
        http_status, body = status.error_response(RuntimeError('secret internals'))
        self.assertEqual(http_status, 500)
        self.assertNotIn('secret internals', body['error'])
