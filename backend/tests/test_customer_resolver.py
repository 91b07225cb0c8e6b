"""Customer identity resolution tests."""
from __future__ import annotations

import pytest

from backend.app.billing import (
    AccountProfile,
    BillingValidationError,
    CustomerIdentityResolver,
    CustomerNotFoundError,
    DuplicateCustomerError,
)


@pytest.fixture
def resolver(repository, gateway) -> CustomerIdentityResolver:
    return CustomerIdentityResolver(repository=repository, gateway=gateway)


def test_stored_reference_is_returned_without_gateway_calls(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="user-1", email="ada@example.com", stripe_customer_id="cus_stored"))

    resolution = resolver.resolve_customer("user-1", "ada@example.com")

    assert resolution.customer_id == "cus_stored"
    assert resolution.source == "profile"
    assert gateway.calls == []
    assert "assign_customer" not in repository.calls


def test_legacy_profile_reference_is_persisted(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="legacy-row", user_id="user-1", stripe_customer_id="cus_legacy"))

    resolution = resolver.resolve_customer("user-1", "ada@example.com")

    assert resolution.customer_id == "cus_legacy"
    assert resolution.profile_id == "legacy-row"
    assert resolution.source == "legacy_profile"
    assert gateway.calls == []
    assert "assign_customer" in repository.calls


def test_gateway_customer_found_by_email_is_adopted(resolver, repository, gateway) -> None:
    gateway.add_customer("cus_existing", "ada@example.com")

    resolution = resolver.resolve_customer("user-1", "ada@example.com")

    assert resolution.customer_id == "cus_existing"
    assert resolution.source == "gateway_email"
    assert "create_customer" not in gateway.calls
    assert repository.profiles["user-1"].stripe_customer_id == "cus_existing"


def test_new_customer_is_created_with_user_metadata(resolver, repository, gateway) -> None:
    resolution = resolver.resolve_customer("user-1", "ada@example.com")

    assert resolution.source == "created"
    assert gateway.calls == ["find_customer_by_email", "create_customer"]
    created = gateway.created_customers[0]
    assert created.metadata == {"user_id": "user-1"}
    assert repository.profiles["user-1"].stripe_customer_id == created.customer_id


def test_second_resolution_reuses_persisted_reference(resolver, repository, gateway) -> None:
    first = resolver.resolve("user-1", "ada@example.com")
    gateway.calls.clear()

    second = resolver.resolve("user-1", "ada@example.com")

    assert first == second
    assert gateway.calls == []
    assert len(gateway.created_customers) == 1


def test_lookup_only_resolution_raises_when_no_customer(resolver, gateway) -> None:
    with pytest.raises(CustomerNotFoundError) as exc_info:
        resolver.resolve("user-1", "ada@example.com", create=False)

    assert exc_info.value.status_code == 404
    assert "create_customer" not in gateway.calls


def test_creation_requires_email(resolver, gateway) -> None:
    with pytest.raises(BillingValidationError):
        resolver.resolve("user-1", None)

    assert gateway.calls == []


def test_stored_reference_wins_over_concurrent_candidate(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="user-1", email="ada@example.com"))
    gateway.add_customer("cus_candidate", "ada@example.com")
    original_assign = repository.assign_customer

    def _assign_after_race(profile_id, **kwargs):
        current = repository.profiles[profile_id]
        repository.profiles[profile_id] = current.model_copy(update={"stripe_customer_id": "cus_winner"})
        return original_assign(profile_id, **kwargs)

    repository.assign_customer = _assign_after_race

    resolution = resolver.resolve_customer("user-1", "ada@example.com")

    assert resolution.customer_id == "cus_winner"
    assert repository.profiles["user-1"].stripe_customer_id == "cus_winner"


def test_duplicate_reference_adopts_stored_value(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="user-1", email="ada@example.com"))
    gateway.add_customer("cus_candidate", "ada@example.com")

    def _raise_duplicate(profile_id, **kwargs):
        repository.profiles[profile_id] = repository.profiles[profile_id].model_copy(
            update={"stripe_customer_id": "cus_stored"}
        )
        raise DuplicateCustomerError("duplicate")

    repository.assign_customer = _raise_duplicate

    assert resolver.resolve("user-1", "ada@example.com") == "cus_stored"


def test_duplicate_reference_without_stored_value_propagates(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="other", stripe_customer_id="cus_taken"))
    gateway.add_customer("cus_taken", "ada@example.com")

    with pytest.raises(DuplicateCustomerError):
        resolver.resolve("user-1", "ada@example.com")


def test_legacy_reference_is_used_when_profile_has_none(resolver, repository, gateway) -> None:
    repository.add(AccountProfile(id="user-1", email="ada@example.com"))
    repository.add(AccountProfile(id="legacy-row", user_id="user-1", stripe_customer_id="cus_legacy"))

    resolution = resolver.resolve_customer("user-1", "ada@example.com", create=False)

    assert resolution.customer_id == "cus_legacy"
    assert resolution.profile_id == "user-1"
    assert resolution.source == "legacy_profile"
    assert gateway.calls == []
    assert "assign_customer" not in repository.calls
    assert repository.profiles["legacy-row"].stripe_customer_id == "cus_legacy"
