"""Tests for error translation decorators and the batch error collector."""

import logging
from unittest import mock

import pytest
from botocore.exceptions import ClientError
from PIL import UnidentifiedImageError

from doc_image_optimizer.core.error_handling import (
    BatchOperationContextManager,
    retry_s3_operation,
    with_error_handling,
)
from doc_image_optimizer.core.exceptions import (
    CompressionError,
    ConfigError,
    FetchError,
)


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": "Details"}}, "GetObject")


def fetch_error(code):
    error = FetchError(f"failed with {code}")
    error.__cause__ = client_error(code)
    return error


@pytest.fixture
def mock_logger():
    """Patch the error handling module's getLogger, which the decorators call per invocation."""
    with mock.patch("doc_image_optimizer.core.error_handling.logging") as mock_logging:
        mock_log_instance = mock.Mock()
        mock_logging.getLogger.return_value = mock_log_instance
        yield mock_log_instance


def test_mock_logger_leaves_other_loggers_real(mock_logger):
    other = logging.getLogger("doc-image-optimizer.test-isolation")
    assert isinstance(other, logging.Logger)
    assert other is not mock_logger


# with_error_handling


def test_with_error_handling_wraps_botocore_error(mock_logger):
    @with_error_handling
    def download():
        raise client_error("AccessDenied")

    with pytest.raises(FetchError, match="S3 operation failed") as excinfo:
        download()

    assert isinstance(excinfo.value.__cause__, ClientError)
    mock_logger.error.assert_called_once()
    assert mock_logger.error.call_args[1].get("exc_info") is True


def test_with_error_handling_wraps_pil_error(mock_logger):
    @with_error_handling
    def decode():
        raise UnidentifiedImageError("cannot identify image file")

    with pytest.raises(CompressionError, match="Failed to decode or encode") as excinfo:
        decode()

    assert excinfo.value.retryable is True
    assert isinstance(excinfo.value.__cause__, UnidentifiedImageError)


def test_with_error_handling_wraps_truncated_data(mock_logger):
    @with_error_handling
    def decode():
        raise OSError("image file is truncated")

    with pytest.raises(CompressionError):
        decode()


def test_with_error_handling_passes_optimizer_errors_through(mock_logger):
    @with_error_handling
    def configure():
        raise ConfigError("bad profile")

    with pytest.raises(ConfigError, match="bad profile"):
        configure()
    mock_logger.error.assert_not_called()


def test_with_error_handling_reraises_unmapped_exception(mock_logger):
    class UnexpectedDecoderBug(Exception):
        pass

    @with_error_handling
    def explode():
        raise UnexpectedDecoderBug("decoder state")

    with pytest.raises(UnexpectedDecoderBug):
        explode()


def test_with_error_handling_returns_value(mock_logger):
    @with_error_handling
    def ok():
        return 42

    assert ok() == 42


# retry_s3_operation


def test_retry_s3_operation_success_on_first_attempt(mock_logger):
    @retry_s3_operation(max_attempts=3, initial_delay=0.01)
    def fetch_cover():
        return b"jpeg-bytes"

    assert fetch_cover() == b"jpeg-bytes"
    mock_logger.info.assert_not_called()
    mock_logger.error.assert_not_called()


@mock.patch("time.sleep", return_value=None)
def test_retry_s3_operation_retries_throttling(mock_time_sleep, mock_logger):
    get_object = mock.Mock(
        side_effect=[fetch_error("SlowDown"), fetch_error("SlowDown"), b"jpeg-bytes"]
    )

    @retry_s3_operation(max_attempts=3, initial_delay=0.01)
    def fetch_throttled():
        return get_object()

    assert fetch_throttled() == b"jpeg-bytes"
    assert get_object.call_count == 3
    assert mock_time_sleep.call_count == 2
    assert mock_logger.info.call_count == 2
    mock_time_sleep.assert_any_call(0.01)
    mock_time_sleep.assert_any_call(0.02)


@mock.patch("time.sleep", return_value=None)
def test_retry_s3_operation_fails_after_max_attempts(mock_time_sleep, mock_logger):
    get_object = mock.Mock(side_effect=fetch_error("ThrottlingException"))

    @retry_s3_operation(max_attempts=3, initial_delay=0.01)
    def fetch_always_throttled():
        return get_object()

    with pytest.raises(FetchError):
        fetch_always_throttled()

    assert get_object.call_count == 3
    assert mock_time_sleep.call_count == 2
    mock_logger.error.assert_called_once()


@mock.patch("time.sleep", return_value=None)
def test_retry_s3_operation_does_not_retry_missing_keys(mock_time_sleep, mock_logger):
    get_object = mock.Mock(side_effect=fetch_error("NoSuchKey"))

    @retry_s3_operation(max_attempts=3, initial_delay=0.01)
    def fetch_missing():
        return get_object()

    with pytest.raises(FetchError):
        fetch_missing()

    assert get_object.call_count == 1
    mock_time_sleep.assert_not_called()


@mock.patch("time.sleep", return_value=None)
def test_retry_s3_operation_non_fetch_error_not_retried(mock_time_sleep, mock_logger):
    get_object = mock.Mock(side_effect=ValueError("bad key"))

    @retry_s3_operation(max_attempts=3, initial_delay=0.01)
    def fetch_with_bug():
        return get_object()

    with pytest.raises(ValueError):
        fetch_with_bug()
    assert get_object.call_count == 1
    mock_time_sleep.assert_not_called()


# BatchOperationContextManager

JOB_OPERATION = "Image optimization for job job-1"


def test_batch_manager_no_errors(mock_logger):
    with BatchOperationContextManager(operation_name=JOB_OPERATION) as manager:
        assert manager.as_dict() == {}

    mock_logger.info.assert_any_call(f"Starting {JOB_OPERATION}.")
    mock_logger.info.assert_any_call(f"{JOB_OPERATION} completed successfully.")
    mock_logger.warning.assert_not_called()


def test_batch_manager_with_errors_added(mock_logger):
    with BatchOperationContextManager(operation_name=JOB_OPERATION) as manager:
        manager.add_error(error_message="retries exhausted", item_identifier="cover.jpg")
        manager.add_error(error_message="cannot identify image file", item_identifier="logo.png")

    mock_logger.warning.assert_any_call(f"{JOB_OPERATION} completed with 2 error(s).")
    mock_logger.error.assert_any_call("  Error 1/2 for item 'cover.jpg': retries exhausted")
    mock_logger.error.assert_any_call("  Error 2/2 for item 'logo.png': cannot identify image file")
    assert manager.as_dict() == {
        "cover.jpg": "retries exhausted",
        "logo.png": "cannot identify image file",
    }
    mock_logger.info.assert_called_once_with(f"Starting {JOB_OPERATION}.")


def test_batch_manager_keeps_last_error_per_item(mock_logger):
    with BatchOperationContextManager() as manager:
        manager.add_error("attempt 1 failed", "photo.jpg")
        manager.add_error("attempt 2 failed", "photo.jpg")

    assert manager.as_dict() == {"photo.jpg": "attempt 2 failed"}


def test_batch_manager_logs_unhandled_exception(mock_logger):
    class PoolShutdownError(Exception):
        pass

    with pytest.raises(PoolShutdownError):
        with BatchOperationContextManager(operation_name=JOB_OPERATION) as manager:
            manager.add_error("timeout", "chart.png")
            raise PoolShutdownError("pool shut down")

    messages = [call[0][0] for call in mock_logger.error.call_args_list]
    assert f"{JOB_OPERATION} failed due to an unhandled exception: pool shut down" in messages
    mock_logger.warning.assert_any_call(f"{JOB_OPERATION} completed with 1 error(s).")
