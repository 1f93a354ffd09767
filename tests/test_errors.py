"""Tests for transfer error classification."""

import errno
import socket

import pytest

from ftpsync.core import ErrorClass, FatalTransferError, classify_error
from ftpsync.core.errors import to_fatal
from ftpsync.transfer import ProtocolError, TransferStopped


@pytest.mark.parametrize("error, expected", [
    (ConnectionResetError(), ErrorClass.RETRY_RECONNECT),
    (ConnectionAbortedError(), ErrorClass.RETRY_RECONNECT),
    (ProtocolError(425, "Can't open data connection"), ErrorClass.RETRY),
    (FileNotFoundError(errno.ENOENT, "gone"), ErrorClass.REMOVED),
    (OSError(errno.EBUSY, "busy"), ErrorClass.LOCKED),
    (PermissionError(errno.EPERM, "denied"), ErrorClass.PERMISSION),
    (TransferStopped(), ErrorClass.STOP),
    (ProtocolError(530, "Not logged in"), ErrorClass.FATAL),
    (ProtocolError(452, "Insufficient storage"), ErrorClass.FATAL),
    (ProtocolError(421, "Service not available"), ErrorClass.FATAL),
    (socket.gaierror(socket.EAI_NONAME, "unknown host"), ErrorClass.FATAL),
    (TimeoutError(), ErrorClass.FATAL),
    (ProtocolError(553, "Bad file name"), ErrorClass.ERROR),
    (ValueError("unexpected"), ErrorClass.ERROR),
])
def test_classify_error(error, expected):
    assert classify_error(error) is expected


def test_stop_message_matches_session_close():
    assert str(TransferStopped()) == "User closed client during task"


@pytest.mark.parametrize("error, kind", [
    (ProtocolError(530), "auth"),
    (ProtocolError(332), "auth"),
    (ProtocolError(452), "storage_full"),
    (ProtocolError(434), "connection"),
    (TimeoutError(), "connection"),
])
def test_fatal_kinds(error, kind):
    fatal = to_fatal(error)
    assert isinstance(fatal, FatalTransferError)
    assert fatal.kind == kind


def test_fatal_keeps_reply_code():
    assert to_fatal(ProtocolError(530, "Login incorrect")).code == 530
