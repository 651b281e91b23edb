"""Tests for LocalIdentityBackend and JIT provisioning against SQLite."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from brewnet.models.user import IdentityRecord
from brewnet.repositories.local_user_repository import LocalUserRepository
from brewnet.services.identity_backend import IdentityBackendError
from brewnet.services.jit_provisioning import JITProvisioningError, JITProvisioningService
from brewnet.services.local_identity_backend import LocalIdentityBackend


@pytest.fixture
def repo(db, logger):
    return LocalUserRepository(db, logger)


@pytest.fixture
def backend(repo, config, logger):
    return LocalIdentityBackend(repo, config, logger)


class TestPasswords:

    def test_hash_then_verify(self, backend, repo):
        identity = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        credentials = repo.get_credentials("ada@example.com")

        assert credentials.user_id == identity.user_id
        assert backend.verify_password("s3cret!", credentials) is True
        assert backend.verify_password("wrong", credentials) is False

    def test_hash_uses_fresh_salt(self, backend):
        first, first_salt = backend.hash_password("same")
        second, second_salt = backend.hash_password("same")
        assert first_salt != second_salt
        assert first != second


class TestAuthenticate:

    def test_existing_account_with_right_password(self, backend):
        created = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        identity = backend.authenticate("Ada@Example.com", "s3cret!")

        assert identity.user_id == created.user_id
        assert identity.email == "ada@example.com"

    def test_wrong_password_is_invalid_credentials(self, backend):
        backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        with pytest.raises(IdentityBackendError) as excinfo:
            backend.authenticate("ada@example.com", "nope123")
        assert excinfo.value.code == "invalid_credentials"

    def test_unknown_email_registers_on_the_spot(self, backend, repo):
        identity = backend.authenticate("new.user@example.com", "pass123")

        record = repo.get_by_id(identity.user_id)
        assert record is not None
        assert record.name == "new.user"
        assert backend.authenticate("new.user@example.com", "pass123").user_id == identity.user_id


class TestSignUp:

    def test_duplicate_email_is_rejected(self, backend):
        backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        with pytest.raises(IdentityBackendError) as excinfo:
            backend.sign_up("ADA@example.com", "other1", {"name": "Ada"})
        assert excinfo.value.code == "user_already_exists"

    def test_phone_sign_up_stores_placeholder_email(self, backend, repo):
        identity = backend.sign_up("+1 555 0100", "pass123", {"name": "Pat"}, phone=True)

        record = repo.get_by_id(identity.user_id)
        assert record.email == "15550100@phone.brewnet.local"
        assert record.phone_number == "+1 555 0100"
        assert identity.email is None
        assert identity.phone == "+1 555 0100"

    def test_duplicate_phone_is_rejected(self, backend):
        backend.sign_up("+15550100", "pass123", {"name": "Pat"}, phone=True)
        with pytest.raises(IdentityBackendError) as excinfo:
            backend.sign_up("+15550100", "pass456", {"name": "Pat"}, phone=True)
        assert excinfo.value.code == "phone_exists"


class TestEntitlements:

    def test_trial_grants_pro_window(self, backend, repo, config):
        identity = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        backend.grant_trial_entitlement(identity.user_id)

        record = repo.get_by_id(identity.user_id)
        assert record.is_pro is True
        start = datetime.fromisoformat(record.pro_start)
        end = datetime.fromisoformat(record.pro_end)
        assert end - start == timedelta(days=config.TRIAL_DAYS)

    def test_lapsed_entitlement_is_cleared(self, backend, repo):
        identity = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        repo.update(identity.user_id, {"is_pro": True, "pro_end": past})

        assert backend.check_and_correct_entitlement_expiry(identity.user_id) is True
        assert repo.get_by_id(identity.user_id).is_pro is False

    def test_unparseable_expiry_is_left_alone(self, backend, repo):
        identity = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        repo.update(identity.user_id, {"is_pro": True, "pro_end": "not-a-date"})

        assert backend.check_and_correct_entitlement_expiry(identity.user_id) is False
        assert repo.get_by_id(identity.user_id).is_pro is True


class TestImports:

    def test_import_operations_are_unsupported(self, backend):
        with pytest.raises(IdentityBackendError) as excinfo:
            backend.log_import_action("imp-1", "user_confirmed", {})
        assert excinfo.value.code == "unsupported"


class TestJITProvisioning:

    def test_existing_record_is_returned(self, backend, logger):
        identity = backend.sign_up("ada@example.com", "s3cret!", {"name": "Ada"})
        record = JITProvisioningService(logger).ensure_identity_record(
            backend, identity.user_id, "ada@example.com",
        )
        assert record.name == "Ada"

    def test_missing_record_is_created_from_email(self, backend, repo, logger):
        record = JITProvisioningService(logger).ensure_identity_record(
            backend, "user-123", "grace.hopper@example.com",
        )
        assert record.name == "grace.hopper"
        assert repo.get_by_id("user-123") is not None

    def test_create_failure_retries_lookup_once(self, logger):
        existing = IdentityRecord(id="user-123", email="a@example.com", name="A")
        fake = MagicMock()
        fake.name = "remote"
        fake.get_identity_record.side_effect = [None, existing]
        fake.create_identity_record.side_effect = RuntimeError("race")

        record = JITProvisioningService(logger).ensure_identity_record(
            fake, "user-123", "a@example.com",
        )

        assert record is existing
        assert fake.get_identity_record.call_count == 2

    def test_create_and_retry_both_failing_raises(self, logger):
        fake = MagicMock()
        fake.name = "remote"
        fake.get_identity_record.return_value = None
        fake.create_identity_record.side_effect = RuntimeError("boom")

        with pytest.raises(JITProvisioningError):
            JITProvisioningService(logger).ensure_identity_record(
                fake, "user-123", "a@example.com",
            )
