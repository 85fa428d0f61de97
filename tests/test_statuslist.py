"""Tests for the revocation registry and StatusList2021 checks."""

import threading

import pytest
import respx
from httpx import Response

from vc_engine.statuslist import (
    CredentialStatus,
    RevocationRegistry,
    StatusListChecker,
    StatusListEntry,
    StatusListError,
    decode_bitstring,
    encode_bitstring,
    get_bit,
)

STATUS_URL = "https://example.com/.well-known/vc/status/revocation"


def create_revoked_statuslist(revoked_indices: list[int], length: int = 131072) -> str:
    """Create a StatusList with specific indices revoked."""
    ba = bytearray(length // 8)
    for index in revoked_indices:
        byte_index = index // 8
        bit_position = 7 - (index % 8)
        ba[byte_index] |= 1 << bit_position
    return encode_bitstring(bytes(ba))


def status_list_credential(encoded_list: str) -> dict:
    return {
        "@context": ["https://www.w3.org/ns/credentials/v2"],
        "type": ["VerifiableCredential", "StatusList2021Credential"],
        "credentialSubject": {
            "type": "StatusList2021",
            "statusPurpose": "revocation",
            "encodedList": encoded_list,
        },
    }


def credential_with_status(index: int, purpose: str = "revocation") -> dict:
    return {
        "credentialStatus": {
            "type": "StatusList2021Entry",
            "statusListCredential": STATUS_URL,
            "statusListIndex": str(index),
            "statusPurpose": purpose,
        }
    }


class TestBitstring:
    """Tests for bitstring encoding."""

    def test_decode_bitstring(self):
        decoded = decode_bitstring(create_revoked_statuslist([], 1024))
        assert len(decoded) == 1024 // 8

    def test_decode_garbage(self):
        with pytest.raises(StatusListError):
            decode_bitstring("not base64 gzip!")

    def test_get_bit_all_zeros(self):
        bitstring = bytes(128)  # 1024 bits, all zeros

        assert get_bit(bitstring, 0) is False
        assert get_bit(bitstring, 100) is False
        assert get_bit(bitstring, 1023) is False

    def test_get_bit_msb_first(self):
        bitstring = decode_bitstring(create_revoked_statuslist([42], 1024))

        assert get_bit(bitstring, 41) is False
        assert get_bit(bitstring, 42) is True
        assert get_bit(bitstring, 43) is False
        assert bitstring[5] == 0b00100000

    def test_get_bit_out_of_range(self):
        with pytest.raises(StatusListError):
            get_bit(bytes(1), 8)


class TestStatusListEntry:
    def test_round_trip(self):
        entry = StatusListEntry.from_dict(credential_with_status(7)["credentialStatus"])
        assert entry.status_list_index == 7
        assert entry.to_dict()["statusListIndex"] == "7"

    def test_invalid_index(self):
        with pytest.raises(StatusListError):
            StatusListEntry.from_dict({"statusListCredential": STATUS_URL, "statusListIndex": "x"})


class TestRevocationRegistry:
    """Tests for issuer-side revocation tracking."""

    def test_indices_are_monotonic(self):
        registry = RevocationRegistry()
        assert [registry.assign_index(f"urn:uuid:{i}") for i in range(3)] == [0, 1, 2]

    def test_duplicate_assignment(self):
        registry = RevocationRegistry()
        registry.assign_index("urn:uuid:a")
        with pytest.raises(StatusListError):
            registry.assign_index("urn:uuid:a")

    def test_list_full(self):
        registry = RevocationRegistry(length=8)
        for i in range(8):
            registry.assign_index(f"urn:uuid:{i}")
        with pytest.raises(StatusListError, match="full"):
            registry.assign_index("urn:uuid:overflow")

    def test_status_entry(self):
        registry = RevocationRegistry(list_url=STATUS_URL)
        entry = registry.status_entry("urn:uuid:a")

        assert entry.status_list_credential == STATUS_URL
        assert entry.status_list_index == 0
        assert entry.id == f"{STATUS_URL}#0"
        assert registry.index_of("urn:uuid:a") == 0

    def test_revoke_is_idempotent(self):
        registry = RevocationRegistry()
        registry.assign_index("urn:uuid:a")
        registry.assign_index("urn:uuid:b")

        registry.revoke("urn:uuid:a")
        once = registry.encode_list()
        registry.revoke("urn:uuid:a")

        assert registry.encode_list() == once
        assert registry.is_revoked("urn:uuid:a")
        assert not registry.is_revoked("urn:uuid:b")

    def test_unknown_credential(self):
        registry = RevocationRegistry()
        assert registry.is_revoked("urn:uuid:unknown") is False
        with pytest.raises(StatusListError):
            registry.revoke("urn:uuid:unknown")

    def test_published_list(self):
        registry = RevocationRegistry(list_url=STATUS_URL, length=1024)
        for i in range(4):
            registry.assign_index(f"urn:uuid:{i}")
        registry.revoke("urn:uuid:2")

        published = registry.status_list_credential()
        bitstring = decode_bitstring(published["credentialSubject"]["encodedList"])

        assert published["id"] == STATUS_URL
        assert [get_bit(bitstring, i) for i in range(4)] == [False, False, True, False]

    def test_concurrent_assignment(self):
        registry = RevocationRegistry()
        indices: list[int] = []

        def worker(n):
            for i in range(50):
                indices.append(registry.assign_index(f"urn:uuid:{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(indices) == list(range(200))


class TestStatusListChecker:
    """Tests for remote StatusList verification."""

    @respx.mock
    def test_check_status_valid(self):
        respx.get(STATUS_URL).mock(
            return_value=Response(200, json=status_list_credential(create_revoked_statuslist([])))
        )

        results = StatusListChecker().check_status(credential_with_status(42))

        assert len(results) == 1
        assert results[0].status == CredentialStatus.VALID

    @respx.mock
    def test_check_status_revoked(self):
        respx.get(STATUS_URL).mock(
            return_value=Response(200, json=status_list_credential(create_revoked_statuslist([42])))
        )

        results = StatusListChecker().check_status(credential_with_status(42))

        assert results[0].status == CredentialStatus.REVOKED
        assert results[0].index == 42

    @respx.mock
    def test_check_status_suspended(self):
        respx.get(STATUS_URL).mock(
            return_value=Response(200, json=status_list_credential(create_revoked_statuslist([3])))
        )

        results = StatusListChecker().check_status(credential_with_status(3, "suspension"))

        assert results[0].status == CredentialStatus.SUSPENDED

    @respx.mock
    def test_list_is_cached(self):
        route = respx.get(STATUS_URL).mock(
            return_value=Response(200, json=status_list_credential(create_revoked_statuslist([])))
        )
        checker = StatusListChecker()
        checker.check_status(credential_with_status(1))
        checker.check_status(credential_with_status(2))
        assert route.call_count == 1

    @respx.mock
    def test_http_error(self):
        respx.get(STATUS_URL).mock(return_value=Response(503))
        with pytest.raises(StatusListError, match="503"):
            StatusListChecker().check_status(credential_with_status(1))

    def test_non_http_list(self):
        entry = StatusListEntry(status_list_credential="urn:uuid:local", status_list_index=0)
        with pytest.raises(StatusListError):
            StatusListChecker().check_entry(entry)

    def test_no_status(self):
        assert StatusListChecker().check_status({}) == []
