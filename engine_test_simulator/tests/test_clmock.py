"""Test the rounds of the consensus layer mock."""

from typing import Callable, List

import pytest

from engine_test_forks import Cancun, ForkSchedule, Shanghai
from engine_test_rpc import PayloadStatus, PayloadStatusEnum

from ..clmock import CLMockHooks, CLMockState
from ..context import ScenarioContext
from ..exceptions import ProtocolViolationError, SequencingError


def test_uninitialized_without_client(make_context: Callable[..., ScenarioContext]):
    """The mock cannot build before a client defines the genesis."""
    context = make_context()
    assert context.clmock.state == CLMockState.UNINITIALIZED
    with pytest.raises(SequencingError):
        context.clmock.produce_payload()


def test_round_without_head(context: ScenarioContext):
    """A mock that lost its head refuses to build instead of failing mid-round."""
    context.clmock.head = None
    with pytest.raises(SequencingError, match="no client yet"):
        context.clmock.produce_payload()
    assert context.clmock.state == CLMockState.READY


def test_round_order(context: ScenarioContext, starter):
    """A round builds, retrieves, imports and then promotes the payload."""
    assert context.clmock.state == CLMockState.READY
    produced = context.clmock.produce_payload()
    assert starter.nodes["client-0"].calls == [
        "engine_forkchoiceUpdatedV3",
        "engine_getPayloadV3",
        "engine_newPayloadV3",
        "engine_forkchoiceUpdatedV3",
    ]
    head = context.clmock.head
    assert head is not None
    assert (head.number, head.hash) == (1, produced.payload.block_hash)
    assert context.clmock.latest is produced
    assert context.clmock.state == CLMockState.READY


def test_hooks_run_in_order(context: ScenarioContext):
    """Hooks run after retrieval, after the import broadcast and after promotion."""
    seen: List[str] = []
    hooks = CLMockHooks(
        on_get_payload=lambda p: seen.append(f"get {p.payload.number}"),
        on_new_payload_broadcast=lambda p: seen.append(f"new {p.payload.number}"),
        on_forkchoice_broadcast=lambda p: seen.append(f"fcu {p.payload.number}"),
    )
    context.clmock.produce_payload(hooks)
    assert seen == ["get 1", "new 1", "fcu 1"]


def test_round_robin_producers(context: ScenarioContext):
    """Mirrored clients take turns building payloads."""
    context.launch_client()
    producers = [context.clmock.produce_payload().producer.name for _ in range(4)]
    assert producers == ["client-0", "client-1", "client-0", "client-1"]


def test_get_payload_delay(context: ScenarioContext):
    """The builder is given the requested time before the payload is retrieved."""
    delays: List[float] = []
    context.clmock.sleep = delays.append
    context.clmock.produce_payload()
    context.clmock.produce_payload(get_payload_delay=2)
    assert delays == [2]


def test_deterministic_attributes(context: ScenarioContext):
    """Attributes only depend on the fork and the height."""
    clmock = context.clmock
    assert clmock.payload_attributes(Cancun, 3, 3) == clmock.payload_attributes(Cancun, 3, 3)
    assert clmock.payload_attributes(Cancun, 3, 3) != clmock.payload_attributes(Cancun, 4, 3)
    shanghai = clmock.payload_attributes(Shanghai, 1, 1)
    assert shanghai.parent_beacon_block_root is None
    assert shanghai.withdrawals == []


def test_fork_transition(make_context: Callable[..., ScenarioContext]):
    """The method versions follow the fork of each payload's timestamp."""
    context = make_context(ForkSchedule.from_fork_height(2))
    context.launch_client()
    forks = [context.clmock.produce_payload().fork for _ in range(3)]
    assert forks == [Shanghai, Cancun, Cancun]
    assert context.clmock.history[0].parent_beacon_root is None


def test_syncing_mirror_is_accepted(context: ScenarioContext, monkeypatch: pytest.MonkeyPatch):
    """A mirrored client other than the producer may answer SYNCING."""
    mirror = context.launch_client()
    monkeypatch.setattr(
        mirror.engine,
        "new_payload",
        lambda *args, **kwargs: PayloadStatus(status=PayloadStatusEnum.SYNCING),
    )
    context.clmock.produce_payload()
    assert context.clmock.state == CLMockState.READY


def test_producer_rejection_faults(context: ScenarioContext, monkeypatch: pytest.MonkeyPatch):
    """The producer must accept its own payload; a rejection faults the mock."""
    monkeypatch.setattr(
        context.primary.engine,
        "new_payload",
        lambda *args, **kwargs: PayloadStatus(
            status=PayloadStatusEnum.INVALID, validation_error="bad block"
        ),
    )
    with pytest.raises(ProtocolViolationError, match="bad block"):
        context.clmock.produce_payload()
    assert context.clmock.state == CLMockState.FAULTED
    assert context.clmock.history == []
    with pytest.raises(SequencingError, match="faulted"):
        context.clmock.produce_payload()


def test_build_request_rejected(context: ScenarioContext, monkeypatch: pytest.MonkeyPatch):
    """A producer that returns no payload id fails the round."""
    engine = context.primary.engine
    forkchoice_updated = engine.forkchoice_updated

    def without_payload_id(*args, **kwargs):
        return forkchoice_updated(*args, **kwargs).model_copy(update={"payload_id": None})

    monkeypatch.setattr(engine, "forkchoice_updated", without_payload_id)
    with pytest.raises(ProtocolViolationError, match="no payload id"):
        context.clmock.produce_payload()


def test_latest_requires_history(context: ScenarioContext):
    """There is no latest payload before the first round."""
    with pytest.raises(SequencingError):
        context.clmock.latest
