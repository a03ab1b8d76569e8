"""Tests for the error hierarchy and the `handle_errors` decorator."""

import logging

import pytest

from settler.lib.errors.app_error import (
    DataInconsistencyError,
    LedgerError,
    ServiceError,
)
from settler.lib.errors.decorators import handle_errors


class TestAppError:
    def test_describe_appends_context(self):
        err = ServiceError("export rejected", status=409, context={"nonce": "0xab"})
        assert err.describe() == "export rejected [status=409, nonce=0xab]"

    def test_describe_without_context(self):
        assert LedgerError("rpc down").describe() == "rpc down"

    def test_log_writes_context_at_own_level(self, caplog):
        with caplog.at_level(logging.DEBUG):
            DataInconsistencyError("claim lost", context={"claim_pending": True}).log()
        record = caplog.records[-1]
        assert record.levelno == logging.CRITICAL
        assert record.getMessage() == (
            "DataInconsistencyError: claim lost [claim_pending=True]"
        )
        assert record.context == {"claim_pending": True}


class TestHandleErrors:
    @pytest.mark.asyncio
    async def test_passes_result_through(self):
        @handle_errors(default_return="fallback")
        async def lookup():
            return "receipt"

        assert await lookup() == "receipt"

    @pytest.mark.asyncio
    async def test_app_error_logged_at_its_level(self, caplog):
        @handle_errors(default_return=None)
        async def lookup():
            raise LedgerError("rpc down", context={"tx_hash": "0xa"})

        with caplog.at_level(logging.DEBUG):
            assert await lookup() is None
        assert caplog.records[-1].levelno == logging.WARNING
        assert "tx_hash=0xa" in caplog.records[-1].getMessage()

    @pytest.mark.asyncio
    async def test_unexpected_error_logged_with_traceback(self, caplog):
        @handle_errors(default_return=[])
        async def lookup():
            raise RuntimeError("boom")

        with caplog.at_level(logging.DEBUG):
            assert await lookup() == []
        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].exc_info is not None

    def test_rejects_plain_functions(self):
        with pytest.raises(TypeError):

            @handle_errors()
            def lookup():
                return None
