import pytest

from cache.keys import CacheKeys
from chain.events import DEPOSIT, TRANSFER, WITHDRAW, decode_log
from tests.helpers import LEDGER, TOKEN_1, TOKEN_2, USER_A, USER_B, USER_C, make_log


@pytest.fixture
def seeded(store):
    """A store holding entries for three users, two tokens and the ledger."""
    keys = {
        'a_t1': CacheKeys.balance(USER_A, TOKEN_1, True),
        'a_t2': CacheKeys.balance(USER_A, TOKEN_2, True),
        'a_total': CacheKeys.total_balance(USER_A, True),
        'b_t2': CacheKeys.balance(USER_B, TOKEN_2, False),
        'c_t2': CacheKeys.balance(USER_C, TOKEN_2, True),
        'c_allow_t2': CacheKeys.allowance(USER_C, TOKEN_2, LEDGER),
        'a_allow_t1': CacheKeys.allowance(USER_A, TOKEN_1, LEDGER),
        'a_allow_t2': CacheKeys.allowance(USER_A, TOKEN_2, LEDGER),
        't1_support': CacheKeys.token_support(TOKEN_1),
        't2_support': CacheKeys.token_support(TOKEN_2),
        'ledger_code': CacheKeys.contract_exists(LEDGER),
        'decrypt': CacheKeys.decrypt_result("0x" + "ab" * 32),
        'network': CacheKeys.network_info(11155111),
    }
    for key in keys.values():
        store.set(key, "value")
    return keys


def live(store, keys):
    return {name for name, key in keys.items() if store.has(key)}


def test_transfer_drops_both_parties_and_token(store, invalidator, seeded):
    invalidator.after_transfer(USER_A, USER_B, TOKEN_1)

    assert live(store, seeded) == {'c_t2', 'c_allow_t2', 't2_support', 'ledger_code',
                                   'decrypt', 'network'}


def test_deposit_drops_user_and_token(store, invalidator, seeded):
    invalidator.after_deposit(USER_C, TOKEN_1)

    remaining = live(store, seeded)
    assert 'c_t2' not in remaining
    assert 'c_allow_t2' not in remaining
    assert 'a_t1' not in remaining
    assert 't1_support' not in remaining
    assert {'a_t2', 'a_total', 'b_t2', 't2_support', 'ledger_code'} <= remaining


def test_withdrawal(store, invalidator, seeded):
    removed = invalidator.after_withdrawal(USER_B, TOKEN_2)

    assert removed == 6
    assert live(store, seeded) == {'a_t1', 'a_total', 'a_allow_t1', 't1_support',
                                   'ledger_code', 'decrypt', 'network'}


def test_mixed_case_addresses_match(store, invalidator, seeded):
    invalidator.invalidate_user(USER_A.upper().replace("0X", "0x"))
    assert not store.has(seeded['a_t1'])
    assert not store.has(seeded['a_total'])


def test_empty_addresses_are_ignored(store, invalidator, seeded):
    assert invalidator.invalidate_principal("") == 0
    assert invalidator.invalidate_principal(None) == 0
    assert invalidator.after_transfer(None, "", TOKEN_2) == 6
    assert store.has(seeded['a_t1'])


def test_approval_only_touches_allowances(store, invalidator, seeded):
    assert invalidator.after_approval(USER_A, TOKEN_1) == 1

    assert not store.has(seeded['a_allow_t1'])
    assert store.has(seeded['a_allow_t2'])
    assert store.has(seeded['a_t1'])


def test_category_clears(store, invalidator, seeded):
    assert invalidator.clear_balance_cache() == 5
    assert store.has(seeded['a_allow_t1'])

    assert invalidator.clear_allowance_cache() == 3
    assert invalidator.clear_fhe_cache() == 1
    assert invalidator.clear_contract_cache() == 3
    assert live(store, seeded) == {'network'}

    assert invalidator.clear_all() == 1
    assert len(store) == 0


def test_apply_decoded_events(store, invalidator, seeded):
    transfer = decode_log(make_log(TRANSFER, USER_A, USER_B, TOKEN_1, amount=10))
    invalidator.apply(transfer)
    assert not store.has(seeded['a_t2'])
    assert not store.has(seeded['b_t2'])
    assert store.has(seeded['c_t2'])

    deposit = decode_log(make_log(DEPOSIT, USER_C, TOKEN_2))
    invalidator.apply(deposit)
    assert not store.has(seeded['c_t2'])
    assert not store.has(seeded['t2_support'])

    withdraw = decode_log(make_log(WITHDRAW, USER_C, TOKEN_2))
    assert invalidator.apply(withdraw) == 0
