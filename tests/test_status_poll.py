"""
Tests for the status-poll rate limiter.

Covers the checkpoint gates, first and subsequent refreshes, outcome
classification, failure handling and the rules for persisted records.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from txn_history.transactions.checkpoints import CheckpointStore
from txn_history.transactions.clients.mock_client import MockTransactionClient
from txn_history.transactions.messages import MessageKey
from txn_history.transactions.models import ErrorPayload, PollCheckpointRecord, PollOutcomeKind
from txn_history.transactions.preferences import InMemoryPreferenceStore
from txn_history.transactions.status_poll import StatusPollRateLimiter

from conftest import NOW, make_transaction

CHECKPOINT1 = 120
CHECKPOINT2 = 7200


@pytest.fixture
def client():
    return MockTransactionClient(transactions=[])


@pytest.fixture
def preferences():
    return InMemoryPreferenceStore()


@pytest.fixture
def checkpoints(preferences):
    return CheckpointStore(preferences)


@pytest.fixture
def on_refreshed():
    return AsyncMock()


@pytest.fixture
def limiter(client, checkpoints, notifier, config, clock, on_refreshed):
    return StatusPollRateLimiter(
        client,
        checkpoints,
        notifier,
        config=config,
        clock=clock,
        on_refreshed=on_refreshed,
    )


async def seed_record(checkpoints, txn_id="TXN1", **overrides):
    values = dict(
        transaction_id=txn_id,
        current_count=1,
        max_count=3,
        second_checkpoint_seconds=CHECKPOINT2,
        exhausted=False,
        last_refreshed_at=NOW - timedelta(seconds=600),
    )
    values.update(overrides)
    record = PollCheckpointRecord(**values)
    await checkpoints.put(record)
    return record


class TestCheckpointOneGate:
    @pytest.mark.asyncio
    async def test_young_transaction_is_blocked_without_fetch(
        self, limiter, client, notifier, on_refreshed
    ):
        txn = make_transaction(age_seconds=60)

        outcome = await limiter.poll_status(txn, CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.BLOCKED
        assert outcome.params == {"checkpoint1": 120}
        assert outcome.fetched is False
        assert client.status_requests == []
        assert notifier.infos == [outcome.message]
        assert "120" in outcome.message
        on_refreshed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_boundary_is_inclusive(self, limiter, client):
        txn = make_transaction(age_seconds=CHECKPOINT1)

        outcome = await limiter.poll_status(txn, CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.BLOCKED
        assert client.status_requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["PRIMARY", "SECONDARY"])
    async def test_payer_roles_skip_the_gate(self, limiter, client, role):
        txn = make_transaction(age_seconds=10, role=role)
        client.set_status(
            make_transaction(age_seconds=10, role=role, current_count=1, max_count=3, check_point2=CHECKPOINT2)
        )

        outcome = await limiter.poll_status(txn, CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert client.status_requests == ["TXN1"]


class TestFirstRefresh:
    @pytest.mark.asyncio
    async def test_fetches_once_and_creates_record(
        self, limiter, client, checkpoints, notifier, on_refreshed
    ):
        txn = make_transaction(age_seconds=130)
        client.set_status(
            make_transaction(age_seconds=130, current_count=1, max_count=3, check_point2=CHECKPOINT2)
        )

        outcome = await limiter.poll_status(txn, CHECKPOINT1)

        assert client.status_requests == ["TXN1"]
        record = await checkpoints.get("TXN1")
        assert record is not None
        assert (record.current_count, record.max_count) == (1, 3)
        assert record.second_checkpoint_seconds == CHECKPOINT2
        assert record.exhausted is False
        assert record.last_refreshed_at == NOW - timedelta(seconds=130)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert outcome.message_key == MessageKey.WITHIN_WINDOW
        assert outcome.params["remaining_count"] == 2
        assert outcome.params["plural"] == "s"
        assert outcome.params["refresh_done"] == "1/3"
        # 11:57:50 + 2h
        assert outcome.params["formatted_time"] == "1:57 PM"
        assert outcome.fetched is True
        assert notifier.infos == [outcome.message]
        on_refreshed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_record_without_server_counters(
        self, limiter, client, preferences, notifier, on_refreshed
    ):
        client.set_status(make_transaction(status="SUCCESS", age_seconds=300))

        outcome = await limiter.poll_status(make_transaction(age_seconds=300), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.STATUS_UPDATED
        assert outcome.transaction.status == "SUCCESS"
        assert preferences.writes == 0
        assert notifier.count == 0
        on_refreshed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_status_is_silent(self, limiter, client, notifier):
        client.set_status(
            make_transaction(status="SUCCESS", age_seconds=300, current_count=1, max_count=3)
        )

        outcome = await limiter.poll_status(make_transaction(age_seconds=300), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.STATUS_UPDATED
        assert notifier.count == 0

    @pytest.mark.asyncio
    async def test_single_remaining_attempt_not_pluralised(self, limiter, client):
        client.set_status(
            make_transaction(age_seconds=300, current_count=2, max_count=3, check_point2=CHECKPOINT2)
        )

        outcome = await limiter.poll_status(make_transaction(age_seconds=300), CHECKPOINT1)

        assert outcome.params["remaining_count"] == 1
        assert outcome.params["plural"] == ""

    @pytest.mark.asyncio
    async def test_delegate_primary(self, limiter, client, notifier):
        client.set_status(
            make_transaction(status="DELEGATE_INITIATED", age_seconds=300, role="PRIMARY")
        )

        outcome = await limiter.poll_status(
            make_transaction(age_seconds=300, role="PRIMARY"), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.DELEGATE_PRIMARY
        assert notifier.errors == [outcome.message]

    @pytest.mark.asyncio
    async def test_delegate_secondary_names_counterpart(self, limiter, client, notifier):
        client.set_status(
            make_transaction(
                status="DELEGATE_INITIATED",
                age_seconds=300,
                role="SECONDARY",
                payer_name="Riya",
            )
        )

        outcome = await limiter.poll_status(
            make_transaction(age_seconds=300, role="SECONDARY"), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.DELEGATE_SECONDARY
        assert outcome.params == {"name": "Riya"}
        assert "Riya" in notifier.errors[0]

    @pytest.mark.asyncio
    async def test_delegate_with_counters_is_classified_normally(self, limiter, client):
        client.set_status(
            make_transaction(
                status="DELEGATE_INITIATED",
                age_seconds=300,
                role="PRIMARY",
                current_count=1,
                max_count=3,
            )
        )

        outcome = await limiter.poll_status(
            make_transaction(age_seconds=300, role="PRIMARY"), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT

    @pytest.mark.asyncio
    async def test_server_reports_exhausted(self, limiter, client, checkpoints, notifier):
        client.set_status(
            make_transaction(age_seconds=300, current_count=3, max_count=3, exhausted=True)
        )

        outcome = await limiter.poll_status(make_transaction(age_seconds=300), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.LIMIT_EXCEEDED
        assert notifier.errors == [outcome.message]
        assert (await checkpoints.get("TXN1")).exhausted is True


class TestRecordedRefresh:
    @pytest.mark.asyncio
    async def test_within_window_with_attempts_left(self, limiter, client, checkpoints, on_refreshed):
        await seed_record(checkpoints, current_count=1, max_count=3)
        client.set_status(
            make_transaction(age_seconds=600, current_count=2, max_count=3, check_point2=CHECKPOINT2)
        )

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert outcome.message_key == MessageKey.WITHIN_WINDOW
        assert outcome.params["refresh_done"] == "2/3"
        assert (await checkpoints.get("TXN1")).current_count == 2
        assert client.status_requests == ["TXN1"]
        on_refreshed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_after_window_uses_after_variant(self, limiter, client, checkpoints):
        await seed_record(checkpoints, current_count=3, max_count=3)
        client.set_status(
            make_transaction(age_seconds=CHECKPOINT2, current_count=3, max_count=5)
        )

        outcome = await limiter.poll_status(
            make_transaction(age_seconds=CHECKPOINT2), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert outcome.message_key == MessageKey.AFTER_WINDOW
        assert outcome.params["remaining_count"] == 2
        record = await checkpoints.get("TXN1")
        assert (record.current_count, record.max_count) == (3, 5)

    @pytest.mark.asyncio
    async def test_counts_used_after_fetch(self, limiter, client, checkpoints, notifier):
        await seed_record(checkpoints, current_count=2, max_count=3)
        client.set_status(make_transaction(age_seconds=600, current_count=3, max_count=3))

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_EXCEEDED
        assert outcome.fetched is True
        assert outcome.params["refresh_done"] == "3/3"
        assert notifier.errors == [outcome.message]

    @pytest.mark.asyncio
    async def test_counts_used_without_fetch(self, limiter, client, checkpoints, on_refreshed):
        await seed_record(checkpoints, current_count=3, max_count=3)

        outcome = await limiter.poll_status(
            make_transaction(status="PENDING", age_seconds=600), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_EXCEEDED
        assert outcome.fetched is False
        assert outcome.params["refresh_done"] == "3/3"
        # last_refreshed_at (11:50) + 2h
        assert outcome.params["formatted_time"] == "1:50 PM"
        assert client.status_requests == []
        on_refreshed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cooldown_for_terminal_caller_status(self, limiter, client, checkpoints, notifier):
        await seed_record(checkpoints, current_count=3, max_count=3)

        outcome = await limiter.poll_status(
            make_transaction(status="DECLINED", age_seconds=600), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.TRY_LATER
        assert outcome.params == {"formatted_time": "1:50 PM"}
        assert notifier.infos == [outcome.message]
        assert client.status_requests == []

    @pytest.mark.asyncio
    async def test_counts_never_decrease(self, limiter, client, checkpoints):
        await seed_record(checkpoints, current_count=2, max_count=3)
        client.set_status(make_transaction(age_seconds=600, current_count=1, max_count=3))

        await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert (await checkpoints.get("TXN1")).current_count == 2

    @pytest.mark.asyncio
    async def test_missing_second_window_keeps_count_gate(self, limiter, client, checkpoints):
        await seed_record(
            checkpoints, current_count=3, max_count=3, second_checkpoint_seconds=0
        )

        outcome = await limiter.poll_status(
            make_transaction(status="PENDING", age_seconds=600), CHECKPOINT1
        )

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_EXCEEDED
        assert client.status_requests == []

    @pytest.mark.asyncio
    async def test_missing_second_window_allows_remaining_attempts(
        self, limiter, client, checkpoints
    ):
        await seed_record(
            checkpoints, current_count=1, max_count=3, second_checkpoint_seconds=0
        )
        client.set_status(make_transaction(age_seconds=600, current_count=2, max_count=3))

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert outcome.message_key == MessageKey.WITHIN_WINDOW


class TestExhausted:
    @pytest.mark.asyncio
    async def test_exhausted_flag_on_transaction(self, limiter, client, preferences, notifier):
        txn = make_transaction(age_seconds=600, exhausted=True)

        outcome = await limiter.poll_status(txn, CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.LIMIT_EXCEEDED
        assert client.status_requests == []
        assert preferences.writes == 0
        assert notifier.infos == [outcome.message]

    @pytest.mark.asyncio
    async def test_exhausted_record_regardless_of_counts(self, limiter, client, checkpoints):
        await seed_record(checkpoints, current_count=1, max_count=3, exhausted=True)

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.LIMIT_EXCEEDED
        assert client.status_requests == []

    @pytest.mark.asyncio
    async def test_repeated_polls_are_idempotent(self, limiter, client, checkpoints, preferences):
        await seed_record(checkpoints, exhausted=True)
        stored = dict(preferences.values)
        writes = preferences.writes

        for _ in range(5):
            outcome = await limiter.poll_status(make_transaction(age_seconds=9000), CHECKPOINT1)
            assert outcome.kind == PollOutcomeKind.LIMIT_EXCEEDED

        assert preferences.values == stored
        assert preferences.writes == writes
        assert client.status_requests == []

    @pytest.mark.asyncio
    async def test_exhaustion_is_sticky(self, limiter, client, checkpoints):
        await seed_record(checkpoints, current_count=2, max_count=3)
        client.set_status(
            make_transaction(age_seconds=600, current_count=3, max_count=3, exhausted=True)
        )
        first = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        client.set_status(
            make_transaction(age_seconds=600, current_count=3, max_count=3, exhausted=False)
        )
        second = await limiter.poll_status(make_transaction(age_seconds=9000), CHECKPOINT1)

        assert first.kind == PollOutcomeKind.LIMIT_EXCEEDED
        assert second.kind == PollOutcomeKind.LIMIT_EXCEEDED
        assert client.status_requests == ["TXN1"]
        assert (await checkpoints.get("TXN1")).exhausted is True


class TestFailures:
    @pytest.mark.asyncio
    async def test_transport_failure_leaves_record_untouched(
        self, limiter, client, checkpoints, preferences, notifier, on_refreshed
    ):
        await seed_record(checkpoints, current_count=1, max_count=3)
        stored = dict(preferences.values)
        client.fail_next_status(ConnectionError("reset"))

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.FAILED
        assert outcome.message_key == MessageKey.SOMETHING_WRONG
        assert notifier.errors == [outcome.message]
        assert preferences.values == stored
        on_refreshed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_service_error_on_first_refresh(self, limiter, client, preferences):
        client.fail_next_status(ErrorPayload(error_code="U30", user_message="Bank unavailable"))

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.FAILED
        assert preferences.writes == 0

    @pytest.mark.asyncio
    async def test_unreadable_records(self, limiter, client, preferences):
        preferences.values["reqChkTxnParams"] = "{not json"

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.FAILED
        assert client.status_requests == []

    @pytest.mark.asyncio
    async def test_concurrent_poll_for_same_transaction(self, limiter, client, notifier):
        gate = asyncio.Event()
        refreshed = make_transaction(age_seconds=600, current_count=1, max_count=3)

        async def slow_refresh(transaction_id, translate=None):
            await gate.wait()
            return refreshed

        client.refresh_transaction = slow_refresh
        txn = make_transaction(age_seconds=600)

        first = asyncio.create_task(limiter.poll_status(txn, CHECKPOINT1))
        for _ in range(3):
            await asyncio.sleep(0)

        second = await limiter.poll_status(txn, CHECKPOINT1)
        gate.set()
        first_outcome = await first

        assert second.kind == PollOutcomeKind.IN_PROGRESS
        assert first_outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert notifier.count == 1

    @pytest.mark.asyncio
    async def test_list_reload_failure_does_not_escape(
        self, limiter, client, checkpoints, notifier, on_refreshed
    ):
        await seed_record(checkpoints, current_count=1, max_count=3)
        client.set_status(make_transaction(age_seconds=600, current_count=2, max_count=3))
        on_refreshed.side_effect = RuntimeError("reload crashed")

        outcome = await limiter.poll_status(make_transaction(age_seconds=600), CHECKPOINT1)

        assert outcome.kind == PollOutcomeKind.ATTEMPTS_LEFT
        assert (await checkpoints.get("TXN1")).current_count == 2
        assert notifier.infos == [outcome.message]
        on_refreshed.assert_awaited_once()
