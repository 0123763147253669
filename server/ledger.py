"""
ProfCoin balances and peer-to-peer trades.

Balances live on the user records (``profcoinBalance``). A trade proposal
moves the amount out of the sender's balance into ``profcoinEscrow`` straight
away, so the sender cannot spend the same coins twice while the recipient
decides. Accepting releases the escrow to the recipient, rejecting or
cancelling returns it to the sender.

Trades are kept in ``trades.json``:

    [
        {
            "id": "trade_...",
            "sender": "a@uni.edu",
            "recipient": "b@uni.edu",
            "amount": 5.0,
            "note": "",
            "status": "pending|accepted|rejected",
            "createdAt": "...",
            "updatedAt": "..."
        },
        ...
    ]
"""
import logging
import math
import numbers

from jsondb import iso_now, make_id

logger = logging.getLogger(__name__)

TRADE_STATUSES = ('accepted', 'rejected')


class TradeError(ValueError):
    """A ledger request that cannot be honoured. ``status`` is the HTTP code."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.status = status


def parse_amount(value):
    """Return ``value`` as a finite float, or None when it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, numbers.Real):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(result):
        return None
    return result


def get_balance(user):
    return {
        'balance': user.get('profcoinBalance') or 0,
        'blocksMined': user.get('blocksMined') or 0,
        'totalEarned': user.get('totalEarned') or 0,
        'escrow': user.get('profcoinEscrow') or 0,
    }


def apply_mining_update(store, email, balance, blocks_mined=None, total_earned=None):
    """Record the balance reported by the mining client."""
    amount = parse_amount(balance)
    if amount is None:
        raise TradeError('Missing email or balance')
    for counter in (blocks_mined, total_earned):
        if counter is not None and parse_amount(counter) is None:
            raise TradeError('blocksMined and totalEarned must be numbers')
    with store.lock:
        user = store.load_user(email)
        if user is None:
            raise TradeError('User not found', 404)
        user['profcoinBalance'] = amount
        user['blocksMined'] = blocks_mined or user.get('blocksMined') or 0
        user['totalEarned'] = total_earned or user.get('totalEarned') or 0
        user['lastMiningUpdate'] = iso_now()
        store.save_user(user)
    logger.info(f"Balance for {email} set to {amount}")
    return user


def load_trades(store):
    return store.read(store.trades_path, [])


def save_trades(store, trades):
    store.write(store.trades_path, trades)


def find_trade(trades, trade_id):
    for t in trades:
        if t['id'] == trade_id:
            return t
    return None


def trades_for(store, email):
    return [t for t in load_trades(store) if t['sender'] == email or t['recipient'] == email]


def pending_trades(store):
    return [t for t in load_trades(store) if t['status'] == 'pending']


def _release_escrow(user, amount):
    user['profcoinEscrow'] = max((user.get('profcoinEscrow') or 0) - amount, 0)


def create_trade(store, sender, recipient, amount, note=''):
    value = parse_amount(amount)
    if not sender or not recipient or value is None or value <= 0:
        raise TradeError('Missing or invalid trade details')
    if sender == recipient:
        raise TradeError('Cannot trade with yourself')

    with store.lock:
        sender_data = store.load_user(sender)
        if sender_data is None:
            raise TradeError('Sender not found', 404)
        if (sender_data.get('profcoinBalance') or 0) < value:
            raise TradeError('Insufficient balance')
        if not store.user_exists(recipient):
            raise TradeError('Recipient not found', 404)

        trade = {
            'id': make_id('trade'),
            'sender': sender,
            'recipient': recipient,
            'amount': value,
            'note': note or '',
            'status': 'pending',
            'createdAt': iso_now(),
        }
        sender_data['profcoinBalance'] = (sender_data.get('profcoinBalance') or 0) - value
        sender_data['profcoinEscrow'] = (sender_data.get('profcoinEscrow') or 0) + value

        trades = load_trades(store)
        trades.append(trade)
        store.save_user(sender_data)
        save_trades(store, trades)

    logger.info(f"Trade {trade['id']} proposed: {sender} -> {recipient} ({value})")
    return trade


def resolve_trade(store, trade_id, status, user_email):
    """Recipient accepts or rejects a pending trade."""
    if status not in TRADE_STATUSES:
        raise TradeError('Invalid status')

    with store.lock:
        trades = load_trades(store)
        trade = find_trade(trades, trade_id)
        if trade is None:
            raise TradeError('Trade not found', 404)
        if trade['recipient'] != user_email:
            raise TradeError('Unauthorized to update this trade', 403)
        if trade['status'] != 'pending':
            raise TradeError('Trade already processed')

        sender_data = store.load_user(trade['sender'])
        recipient_data = store.load_user(trade['recipient'])

        if status == 'accepted':
            if recipient_data is None:
                raise TradeError('Recipient not found', 404)
            if sender_data is not None:
                _release_escrow(sender_data, trade['amount'])
                store.save_user(sender_data)
            recipient_data['profcoinBalance'] = (recipient_data.get('profcoinBalance') or 0) + trade['amount']
            store.save_user(recipient_data)
        elif sender_data is not None:
            _refund(store, sender_data, trade['amount'])

        trade['status'] = status
        trade['updatedAt'] = iso_now()
        save_trades(store, trades)

    logger.info(f"Trade {trade_id} {status} by {user_email}")
    return trade


def _refund(store, sender_data, amount):
    _release_escrow(sender_data, amount)
    sender_data['profcoinBalance'] = (sender_data.get('profcoinBalance') or 0) + amount
    store.save_user(sender_data)


def cancel_trade(store, trade_id, user_email):
    """Sender withdraws a pending trade; the escrow goes back to them."""
    with store.lock:
        trades = load_trades(store)
        trade = find_trade(trades, trade_id)
        if trade is None:
            raise TradeError('Trade not found', 404)
        if trade['sender'] != user_email:
            raise TradeError('Unauthorized to cancel this trade', 403)
        if trade['status'] != 'pending':
            raise TradeError('Cannot cancel processed trade')

        sender_data = store.load_user(trade['sender'])
        if sender_data is not None:
            _refund(store, sender_data, trade['amount'])
        trades.remove(trade)
        save_trades(store, trades)

    logger.info(f"Trade {trade_id} cancelled by {user_email}")
    return trade


def drop_user_trades(store, email):
    """Remove pending trades involving ``email``, refunding senders that still exist."""
    with store.lock:
        trades = load_trades(store)
        kept = []
        dropped = 0
        for t in trades:
            if t['status'] == 'pending' and email in (t['sender'], t['recipient']):
                sender_data = store.load_user(t['sender'])
                if sender_data is not None and t['sender'] != email:
                    _refund(store, sender_data, t['amount'])
                dropped += 1
                continue
            kept.append(t)
        if dropped:
            save_trades(store, kept)
    return dropped
