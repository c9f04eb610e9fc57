"""
Unit tests for connector retry with exponential backoff.
"""

import unittest
from unittest.mock import Mock

from domain_migrator.database.retry import backoff_delay_ms, call_with_retry
from domain_migrator.exceptions import ConnectorError, EncryptionError, TransformationError


class TestBackoff(unittest.TestCase):
    def test_delay_doubles(self):
        self.assertEqual([backoff_delay_ms(1000, n) for n in range(3)], [1000, 2000, 4000])

    def test_zero_delay(self):
        self.assertEqual(backoff_delay_ms(0, 5), 0)


class TestCallWithRetry(unittest.TestCase):
    def setUp(self):
        self.sleep = Mock()

    def test_success_first_time(self):
        operation = Mock(return_value=42)

        result = call_with_retry(operation, "count residents", max_retries=3, retry_delay_ms=1000, sleep=self.sleep)

        self.assertEqual(result, 42)
        operation.assert_called_once()
        self.sleep.assert_not_called()

    def test_recovers_after_retryable_failures(self):
        operation = Mock(side_effect=[ConnectorError("timeout", "source"),
                                      ConnectorError("timeout", "source"),
                                      ['row']])

        result = call_with_retry(operation, "fetch page", max_retries=3, retry_delay_ms=1000, sleep=self.sleep)

        self.assertEqual(result, ['row'])
        self.assertEqual(operation.call_count, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [1.0, 2.0])

    def test_gives_up_after_max_retries(self):
        operation = Mock(side_effect=ConnectorError("connection refused", "care_service"))

        with self.assertRaises(ConnectorError) as context:
            call_with_retry(operation, "write batch", max_retries=3, retry_delay_ms=1000, sleep=self.sleep)

        self.assertEqual(context.exception.service_name, "care_service")
        self.assertEqual(operation.call_count, 4)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [1.0, 2.0, 4.0])

    def test_non_retryable_connector_error_raised_immediately(self):
        operation = Mock(side_effect=ConnectorError("login failed", "source", retryable=False))

        with self.assertRaises(ConnectorError):
            call_with_retry(operation, "connect", max_retries=3, retry_delay_ms=1000, sleep=self.sleep)

        operation.assert_called_once()
        self.sleep.assert_not_called()

    def test_retryable_encryption_error_is_retried(self):
        operation = Mock(side_effect=[EncryptionError("key service busy", retryable=True), 'token'])

        self.assertEqual(call_with_retry(operation, "encrypt", 2, 10, sleep=self.sleep), 'token')
        self.sleep.assert_called_once_with(0.01)

    def test_other_errors_propagate_without_retry(self):
        operation = Mock(side_effect=TransformationError("bad value"))

        with self.assertRaises(TransformationError):
            call_with_retry(operation, "transform", max_retries=3, retry_delay_ms=1000, sleep=self.sleep)

        operation.assert_called_once()

    def test_zero_retries(self):
        operation = Mock(side_effect=ConnectorError("timeout", "source"))

        with self.assertRaises(ConnectorError):
            call_with_retry(operation, "count", max_retries=0, retry_delay_ms=1000, sleep=self.sleep)

        operation.assert_called_once()


if __name__ == '__main__':
    unittest.main()
