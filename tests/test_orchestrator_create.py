"""Tests for record creation — proves protocol order and failure isolation."""

import asyncio

import pytest

from autopay.chain.accounts import StaticIdentityProvider
from autopay.config import AutoPayConfig
from autopay.engine.orchestrator import LifecycleOrchestrator, new_record_id
from autopay.errors import EncryptionFailure, SubmissionFailed, UserRejected
from autopay.models.operation import ErrorKind, OperationPhase, OperationStatus
from autopay.models.record import VerificationStatus
from autopay.sim.network import SimulatedEncryptionGateway, SimulatedNetwork

ALICE = "0xAAA"


class CountingGateway(SimulatedEncryptionGateway):
    def __init__(self, network: SimulatedNetwork) -> None:
        super().__init__(network)
        self.initialize_calls = 0
        self.encrypt_calls = 0

    async def initialize(self) -> None:
        self.initialize_calls += 1
        await super().initialize()

    async def encrypt(self, contract_address: str, requester: str, plaintext: int):
        self.encrypt_calls += 1
        return await super().encrypt(contract_address, requester, plaintext)


@pytest.fixture
def network() -> SimulatedNetwork:
    return SimulatedNetwork(clock=lambda: 1_760_000_000)


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(ALICE)


@pytest.fixture
def gateway(network: SimulatedNetwork) -> CountingGateway:
    return CountingGateway(network)


@pytest.fixture
def orch(network, identity, gateway) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        network.ledger(ALICE),
        gateway,
        network.oracle(),
        identity=identity,
        config=AutoPayConfig(max_condition=1000),
    )


def _record_statuses(orch: LifecycleOrchestrator) -> list[OperationStatus]:
    seen: list[OperationStatus] = []
    orch.status.subscribe(lambda s: seen.append(s) if s is not None else None)
    return seen


class TestCreateHappyPath:
    def test_scenario_rent(self, orch: LifecycleOrchestrator) -> None:
        result = asyncio.run(orch.create_record("rent", 100, 5, ALICE))
        assert result.success, result.message
        record = result.value
        assert record.name == "rent"
        assert record.creator == ALICE
        assert record.public_condition == 5
        assert record.verification_status == VerificationStatus.UNVERIFIED
        assert record.clear_amount is None
        assert record.ciphertext_handle is not None

    def test_record_in_snapshot(self, orch: LifecycleOrchestrator) -> None:
        result = asyncio.run(orch.create_record("rent", 100, 5))
        ids = [r.record_id for r in orch.store.snapshot()]
        assert result.value.record_id in ids

    def test_uses_connected_identity_by_default(self, orch: LifecycleOrchestrator) -> None:
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.value.creator == ALICE

    def test_explicit_id_factory(self, network, gateway, identity) -> None:
        orch = LifecycleOrchestrator(
            network.ledger(ALICE), gateway, network.oracle(),
            identity=identity, id_factory=lambda: "autopay-fixed",
        )
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.value.record_id == "autopay-fixed"
        assert network.record_ids() == ["autopay-fixed"]

    def test_default_ids_are_unique(self) -> None:
        ids = {new_record_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("autopay-") for i in ids)

    def test_initializes_gateway_lazily(self, orch, gateway) -> None:
        assert not gateway.is_initialized
        asyncio.run(orch.create_record("rent", 100, 5))
        assert gateway.is_initialized
        assert gateway.initialize_calls == 1

    def test_status_sequence(self, orch: LifecycleOrchestrator) -> None:
        seen = _record_statuses(orch)
        asyncio.run(orch.create_record("rent", 100, 5))
        assert [s.phase for s in seen] == [OperationPhase.PENDING, OperationPhase.SUCCESS]
        assert seen[-1].message == "Auto-pay created successfully!"

    def test_concurrent_creations_both_succeed(self, orch, network) -> None:
        async def both():
            return await asyncio.gather(
                orch.create_record("rent", 100, 5),
                orch.create_record("rent", 100, 5),
            )

        first, second = asyncio.run(both())
        assert first.success and second.success
        assert first.value.record_id != second.value.record_id
        assert len(network.record_ids()) == 2


class TestCreateFailures:
    def test_encryption_failure_leaves_no_record(self, network, gateway, identity) -> None:
        orch = LifecycleOrchestrator(
            network.ledger(ALICE), gateway, network.oracle(),
            identity=identity, id_factory=lambda: "autopay-x",
        )
        network.fail_next_encrypt(EncryptionFailure("boom"))
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.ENCRYPTION_FAILURE
        assert result.message == "Submission failed: boom"
        assert orch.store.get("autopay-x") is None
        assert network.record_ids() == []
        asyncio.run(orch.refresh())
        assert orch.store.get("autopay-x") is None

    def test_user_rejection_leaves_store_unchanged(self, orch, network) -> None:
        asyncio.run(orch.create_record("gym", 30, 1))
        before = orch.store.snapshot()
        network.fail_next_write(UserRejected())
        seen = _record_statuses(orch)

        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.USER_REJECTED
        assert result.message == "Transaction rejected by user"
        assert orch.store.snapshot() == before
        assert len(network.record_ids()) == 1
        assert seen[-1].phase == OperationPhase.ERROR
        assert sum(1 for s in seen if s.is_terminal) == 1

    def test_submission_failure(self, orch, network) -> None:
        network.fail_next_write(SubmissionFailed("out of gas"))
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.SUBMISSION_FAILED
        assert result.message == "Submission failed: out of gas"
        assert orch.store.snapshot() == []

    def test_unexpected_error_reported_as_submission_failure(self, orch, network) -> None:
        network.fail_next_write(RuntimeError("connection reset"))
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.SUBMISSION_FAILED
        assert "connection reset" in result.message

    def test_not_retried(self, orch, gateway, network) -> None:
        network.fail_next_write(SubmissionFailed("nope"))
        asyncio.run(orch.create_record("rent", 100, 5))
        assert gateway.encrypt_calls == 1
        assert network.record_ids() == []

    def test_amount_outside_encryption_range(self, orch) -> None:
        result = asyncio.run(orch.create_record("rent", 2**32, 5))
        assert result.error == ErrorKind.ENCRYPTION_FAILURE

    def test_initialization_failure(self, orch, network) -> None:
        network.fail_next_initialize(EncryptionFailure("no key material"))
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.ENCRYPTION_FAILURE
        assert network.record_ids() == []


class TestCreatePreconditions:
    def test_not_connected(self, orch, identity, gateway) -> None:
        identity.disconnect()
        seen = _record_statuses(orch)
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.error == ErrorKind.NOT_CONNECTED
        assert result.message == "Please connect wallet first"
        assert [s.phase for s in seen] == [OperationPhase.ERROR]
        assert gateway.encrypt_calls == 0

    def test_identity_must_be_connected_account(self, orch) -> None:
        result = asyncio.run(orch.create_record("rent", 100, 5, creator="0xBBB"))
        assert result.error == ErrorKind.NOT_CONNECTED

    def test_explicit_identity_without_provider(self, network, gateway) -> None:
        orch = LifecycleOrchestrator(network.ledger(ALICE), gateway, network.oracle())
        assert asyncio.run(orch.create_record("rent", 1, 1, creator=ALICE)).success
        assert asyncio.run(orch.create_record("rent", 1, 1)).error == ErrorKind.NOT_CONNECTED

    @pytest.mark.parametrize("name,amount,condition", [
        ("", 100, 5),
        ("   ", 100, 5),
        ("rent", -1, 5),
        ("rent", True, 5),
        ("rent", "100", 5),
        ("rent", 100, -1),
        ("rent", 100, 1001),
    ])
    def test_invalid_input(self, orch, gateway, name, amount, condition) -> None:
        result = asyncio.run(orch.create_record(name, amount, condition))
        assert result.error == ErrorKind.INVALID_INPUT
        assert gateway.encrypt_calls == 0


class TestInitialize:
    def test_initialize_once_under_concurrency(self, orch, gateway) -> None:
        async def both():
            return await asyncio.gather(orch.initialize(), orch.initialize())

        results = asyncio.run(both())
        assert all(r.success for r in results)
        assert gateway.initialize_calls == 1

    def test_initialize_failure_message(self, orch, network) -> None:
        network.fail_next_initialize(EncryptionFailure("no key material"))
        result = asyncio.run(orch.initialize())
        assert result.error == ErrorKind.ENCRYPTION_FAILURE
        assert result.message == "FHE initialization failed: no key material"

    def test_initialize_requires_identity(self, orch, identity) -> None:
        identity.disconnect()
        result = asyncio.run(orch.initialize())
        assert result.error == ErrorKind.NOT_CONNECTED

    def test_contract_identity_cached(self, orch, network) -> None:
        assert asyncio.run(orch.contract_identity()) == network.contract_address
        network.contract_address = "0xchanged"
        assert asyncio.run(orch.contract_identity()) != "0xchanged"


class TestFailingListener:
    def test_create_completes_and_publishes_terminal(self, orch) -> None:
        def broken(status) -> None:
            raise RuntimeError("render failed")

        orch.status.subscribe(broken)
        result = asyncio.run(orch.create_record("rent", 100, 5))
        assert result.success
        assert orch.status.current.phase == OperationPhase.SUCCESS
        assert orch.status.current.message == "Auto-pay created successfully!"
