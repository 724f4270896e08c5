"""Tests for eviction policies (LRU / FIFO)."""

import pytest

from tiercache.eviction import (
    EvictionPolicyType,
    FIFOPolicy,
    LRUPolicy,
    create_eviction_policy,
)
from tiercache.exceptions import ConfigurationError


class TestLRUPolicy:
    def test_victim_is_least_recently_used(self) -> None:
        policy = LRUPolicy()
        for key in ("a", "b", "c"):
            policy.on_insert(key)
        policy.on_access("a")
        assert policy.select_victim() == "b"

    def test_access_of_unknown_key_is_ignored(self) -> None:
        policy = LRUPolicy()
        policy.on_insert("a")
        policy.on_access("ghost")
        assert policy.keys() == ["a"]

    def test_remove_forgets_key(self) -> None:
        policy = LRUPolicy()
        policy.on_insert("a")
        policy.on_insert("b")
        policy.on_remove("a")
        assert policy.select_victim() == "b"
        assert len(policy) == 1


class TestFIFOPolicy:
    def test_access_does_not_change_victim(self) -> None:
        policy = FIFOPolicy()
        for key in ("a", "b", "c"):
            policy.on_insert(key)
        policy.on_access("a")
        policy.on_access("a")
        assert policy.select_victim() == "a"

    def test_order_is_insertion_order(self) -> None:
        policy = FIFOPolicy()
        for key in ("x", "y", "z"):
            policy.on_insert(key)
        assert policy.keys() == ["x", "y", "z"]


class TestSelectVictim:
    @pytest.mark.parametrize("policy_cls", [LRUPolicy, FIFOPolicy])
    def test_empty_policy_raises(self, policy_cls) -> None:
        with pytest.raises(LookupError):
            policy_cls().select_victim()


class TestCreateEvictionPolicy:
    def test_by_name(self) -> None:
        assert isinstance(create_eviction_policy("lru"), LRUPolicy)
        assert isinstance(create_eviction_policy("fifo"), FIFOPolicy)

    def test_by_enum(self) -> None:
        assert create_eviction_policy(EvictionPolicyType.FIFO).policy_type is EvictionPolicyType.FIFO

    def test_fresh_instance_each_call(self) -> None:
        assert create_eviction_policy("lru") is not create_eviction_policy("lru")

    def test_unknown_policy(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown eviction policy"):
            create_eviction_policy("lfu")
