import pytest

from cache.keys import (
    TTL_CONFIG,
    CacheKeys,
    KeyCategory,
    TTLPolicy,
    category_for_key,
    category_label,
)
from tests.helpers import LEDGER, TOKEN_1, USER_A

MIXED_USER = "0xA1a1A1a1A1a1A1a1A1a1A1a1A1a1A1a1A1a1A1a1"


def test_keys_embed_lowercased_addresses():
    key = CacheKeys.balance(MIXED_USER, TOKEN_1.upper().replace("0X", "0x"), with_fhe=True)
    assert key == f"balance:{USER_A}:{TOKEN_1}:fhe"
    assert key.lower() == key


def test_key_formats():
    assert CacheKeys.balance(USER_A, TOKEN_1) == f"balance:{USER_A}:{TOKEN_1}:no-fhe"
    assert CacheKeys.total_balance(USER_A, True) == f"total-balance:{USER_A}:fhe"
    assert CacheKeys.allowance(USER_A, TOKEN_1, LEDGER) == f"allowance:{USER_A}:{TOKEN_1}:{LEDGER}"
    assert CacheKeys.token_support(TOKEN_1) == f"token-support:{TOKEN_1}"
    assert CacheKeys.contract_exists(LEDGER) == f"contract-exists:{LEDGER}"
    assert CacheKeys.encrypt_result(42, USER_A) == f"encrypt-result:42:{USER_A}"
    assert CacheKeys.decrypt_result("0xABCD") == "decrypt-result:0xabcd"
    assert CacheKeys.public_decrypt_result("0xABCD") == "public-decrypt-result:0xabcd"
    assert CacheKeys.network_info(11155111) == "network-info:11155111"


def test_fhe_flag_separates_entries():
    assert CacheKeys.balance(USER_A, TOKEN_1, True) != CacheKeys.balance(USER_A, TOKEN_1, False)


def test_category_for_key():
    assert category_for_key(CacheKeys.balance(USER_A, TOKEN_1)) is KeyCategory.BALANCE
    assert category_for_key(CacheKeys.total_balance(USER_A)) is KeyCategory.TOTAL_BALANCE
    assert category_for_key(CacheKeys.contract_exists(LEDGER)) is KeyCategory.CONTRACT_EXISTS
    assert category_for_key("custom:thing") is None
    assert category_for_key("no-separator") is None


def test_category_label_for_foreign_keys():
    assert category_label(CacheKeys.allowance(USER_A, TOKEN_1, LEDGER)) == "allowance"
    assert category_label("anything") == "other"


def test_default_ttls():
    assert TTL_CONFIG[KeyCategory.BALANCE] == 15
    assert TTL_CONFIG[KeyCategory.TOTAL_BALANCE] == 20
    assert TTL_CONFIG[KeyCategory.ALLOWANCE] == 30
    assert TTL_CONFIG[KeyCategory.TOKEN_SUPPORT] == 60
    assert TTL_CONFIG[KeyCategory.CONTRACT_EXISTS] == 300
    assert TTL_CONFIG[KeyCategory.ENCRYPT_RESULT] == 60
    assert TTL_CONFIG[KeyCategory.DECRYPT_RESULT] == 30
    assert TTL_CONFIG[KeyCategory.PUBLIC_DECRYPT_RESULT] == 30
    assert TTL_CONFIG[KeyCategory.NETWORK_INFO] == 60
    assert set(TTL_CONFIG) == set(KeyCategory)


def test_ttl_policy_overrides():
    policy = TTLPolicy({"balance": 5, KeyCategory.ALLOWANCE: 7}, default_ttl=12)
    assert policy.ttl_for(KeyCategory.BALANCE) == 5
    assert policy.ttl_for_key(CacheKeys.allowance(USER_A, TOKEN_1, LEDGER)) == 7
    assert policy.ttl_for_key(CacheKeys.contract_exists(LEDGER)) == 300
    assert policy.ttl_for_key("custom:thing") == 12
    assert policy.as_dict()["balance"] == 5

    # The module table is untouched
    assert TTL_CONFIG[KeyCategory.BALANCE] == 15


def test_ttl_policy_unknown_category():
    with pytest.raises(ValueError):
        TTLPolicy({"not-a-category": 5})


def test_foreign_key_defers_to_store_default():
    assert TTLPolicy().ttl_for_key("custom:thing") is None
