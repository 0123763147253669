import pytest

import ledger
from conftest import make_user


def _total(store, *emails):
    total = 0
    for email in emails:
        user = store.load_user(email)
        total += (user.get('profcoinBalance') or 0) + (user.get('profcoinEscrow') or 0)
    return total


def test_parse_amount():
    assert ledger.parse_amount(5) == 5.0
    assert ledger.parse_amount('2.5') == 2.5
    assert ledger.parse_amount('abc') is None
    assert ledger.parse_amount(True) is None
    assert ledger.parse_amount(None) is None
    assert ledger.parse_amount([1]) is None
    assert ledger.parse_amount('nan') is None
    assert ledger.parse_amount('inf') is None
    assert ledger.parse_amount(float('nan')) is None
    assert ledger.parse_amount(float('-inf')) is None


def test_mining_update_rejects_non_finite_values(store):
    make_user(store, 'a@x', balance=3)
    for balance, blocks in ((float('nan'), None), ('inf', None), (5, float('inf'))):
        with pytest.raises(ledger.TradeError) as exc:
            ledger.apply_mining_update(store, 'a@x', balance, blocks)
        assert exc.value.status == 400
    assert store.load_user('a@x')['profcoinBalance'] == 3


def test_get_balance_defaults():
    assert ledger.get_balance({'email': 'a@x'}) == {
        'balance': 0, 'blocksMined': 0, 'totalEarned': 0, 'escrow': 0}


def test_mining_update_keeps_previous_counters(store):
    make_user(store, 'a@x')
    ledger.apply_mining_update(store, 'a@x', 10, 3, 12)
    user = ledger.apply_mining_update(store, 'a@x', 15)
    assert user['profcoinBalance'] == 15
    assert user['blocksMined'] == 3
    assert user['totalEarned'] == 12
    assert 'lastMiningUpdate' in user


def test_mining_update_unknown_user(store):
    with pytest.raises(ledger.TradeError) as exc:
        ledger.apply_mining_update(store, 'ghost@x', 1)
    assert exc.value.status == 404


def test_create_trade_escrows_amount(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    trade = ledger.create_trade(store, 'a@x', 'b@x', '4', 'lunch')
    assert trade['status'] == 'pending'
    assert trade['amount'] == 4.0
    assert trade['id'].startswith('trade_')
    sender = store.load_user('a@x')
    assert sender['profcoinBalance'] == 6
    assert sender['profcoinEscrow'] == 4
    assert ledger.pending_trades(store) == [trade]


@pytest.mark.parametrize('sender,recipient,amount,status,message', [
    ('a@x', 'b@x', 0, 400, 'Missing or invalid trade details'),
    ('a@x', 'b@x', -3, 400, 'Missing or invalid trade details'),
    ('a@x', '', 3, 400, 'Missing or invalid trade details'),
    ('a@x', 'a@x', 3, 400, 'Cannot trade with yourself'),
    ('ghost@x', 'b@x', 3, 404, 'Sender not found'),
    ('a@x', 'ghost@x', 3, 404, 'Recipient not found'),
    ('a@x', 'b@x', 11, 400, 'Insufficient balance'),
])
def test_create_trade_rejections(store, sender, recipient, amount, status, message):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    with pytest.raises(ledger.TradeError) as exc:
        ledger.create_trade(store, sender, recipient, amount)
    assert exc.value.status == status
    assert str(exc.value) == message
    assert store.load_user('a@x')['profcoinBalance'] == 10


def test_escrow_prevents_double_spend(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    make_user(store, 'c@x')
    ledger.create_trade(store, 'a@x', 'b@x', 7)
    with pytest.raises(ledger.TradeError):
        ledger.create_trade(store, 'a@x', 'c@x', 7)


def test_accept_transfers_escrow(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x', balance=1)
    trade = ledger.create_trade(store, 'a@x', 'b@x', 4)
    done = ledger.resolve_trade(store, trade['id'], 'accepted', 'b@x')
    assert done['status'] == 'accepted'
    assert 'updatedAt' in done
    assert store.load_user('a@x')['profcoinBalance'] == 6
    assert store.load_user('a@x')['profcoinEscrow'] == 0
    assert store.load_user('b@x')['profcoinBalance'] == 5
    assert _total(store, 'a@x', 'b@x') == 11


def test_reject_refunds_sender(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    trade = ledger.create_trade(store, 'a@x', 'b@x', 4)
    ledger.resolve_trade(store, trade['id'], 'rejected', 'b@x')
    assert store.load_user('a@x')['profcoinBalance'] == 10
    assert store.load_user('a@x')['profcoinEscrow'] == 0
    assert (store.load_user('b@x').get('profcoinBalance') or 0) == 0


def test_resolve_rules(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    trade = ledger.create_trade(store, 'a@x', 'b@x', 4)
    with pytest.raises(ledger.TradeError) as exc:
        ledger.resolve_trade(store, trade['id'], 'maybe', 'b@x')
    assert exc.value.status == 400
    with pytest.raises(ledger.TradeError) as exc:
        ledger.resolve_trade(store, 'trade_missing', 'accepted', 'b@x')
    assert exc.value.status == 404
    with pytest.raises(ledger.TradeError) as exc:
        ledger.resolve_trade(store, trade['id'], 'accepted', 'a@x')
    assert exc.value.status == 403
    ledger.resolve_trade(store, trade['id'], 'accepted', 'b@x')
    with pytest.raises(ledger.TradeError) as exc:
        ledger.resolve_trade(store, trade['id'], 'rejected', 'b@x')
    assert str(exc.value) == 'Trade already processed'


def test_cancel_refunds_and_removes(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x')
    trade = ledger.create_trade(store, 'a@x', 'b@x', 4)
    with pytest.raises(ledger.TradeError) as exc:
        ledger.cancel_trade(store, trade['id'], 'b@x')
    assert exc.value.status == 403
    ledger.cancel_trade(store, trade['id'], 'a@x')
    assert ledger.trades_for(store, 'a@x') == []
    assert store.load_user('a@x')['profcoinBalance'] == 10


def test_trades_for_lists_both_directions(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x', balance=10)
    make_user(store, 'c@x', balance=10)
    ledger.create_trade(store, 'a@x', 'b@x', 1)
    ledger.create_trade(store, 'b@x', 'a@x', 2)
    ledger.create_trade(store, 'b@x', 'c@x', 3)
    assert len(ledger.trades_for(store, 'a@x')) == 2
    assert len(ledger.trades_for(store, 'c@x')) == 1


def test_drop_user_trades_refunds_other_senders(store):
    make_user(store, 'a@x', balance=10)
    make_user(store, 'b@x', balance=10)
    ledger.create_trade(store, 'a@x', 'b@x', 3)
    ledger.create_trade(store, 'b@x', 'a@x', 5)
    assert ledger.drop_user_trades(store, 'b@x') == 2
    assert ledger.load_trades(store) == []
    assert store.load_user('a@x')['profcoinBalance'] == 10
    assert store.load_user('a@x')['profcoinEscrow'] == 0
