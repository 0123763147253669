#!/usr/bin/env python3
"""
Flask server for the Prof campus app.

Profiles, profile images, the radio show schedule, ProfCoin balances and
trades, direct messages and the news feed. Everything is stored as flat JSON
files under the data directory (see jsondb.py). Socket.IO pushes new stories,
engagement, messages and schedule changes to connected clients.
"""
from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO, emit, join_room
import datetime
import logging
import os
import shutil
import sys

import ledger
import settings
import shows
from jsondb import JsonStore, iso_now, iso_timestamp, make_id, safe_name, valid_email

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(settings.LOG_FILE, encoding='utf-8')
    ]
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__, static_folder=settings.STATIC_DIR, static_url_path='/static')
app.config['MAX_CONTENT_LENGTH'] = settings.MAX_UPLOAD_BYTES
CORS(app, resources={r"/*": {"origins": "*"}})
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

store = JsonStore(settings.DATA_DIR)

NEWS_ROOM = 'news-feed'
PROFILE_FIELDS = ('name', 'bio')


def _user_room(email):
    return f'user:{email}'


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _non_string_field(data, *keys):
    """First of ``keys`` that is present but not a string, or None."""
    for key in keys:
        if data.get(key) is not None and not isinstance(data[key], str):
            return key
    return None


def _type_error(key):
    logger.warning(f"Rejected request: {key} is not a string")
    return jsonify({'error': f'{key} must be a string'}), 400


def _allowed_image(filename):
    extension = os.path.splitext(filename)[1].lstrip('.').lower()
    return extension in settings.ALLOWED_IMAGE_EXTENSIONS


def _stamp_key(value):
    """Sort key for stored message timestamps, some of which predate ISO strings."""
    if value is None:
        return ''
    try:
        return iso_timestamp(value)
    except ValueError:
        return ''


def _current_hour():
    return datetime.datetime.now().hour


def _broadcast_schedule(data):
    socketio.emit('schedule-updated', {'slots': shows.build_slots(data)})


# ============================================================================
# Profiles
# ============================================================================

@app.route('/api/signup', methods=['POST'])
def api_signup():
    """Create a new user."""
    data = _json_body()
    bad = _non_string_field(data, 'name', 'email')
    if bad:
        return _type_error(bad)
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip()

    if not name or not email:
        logger.warning("Signup failed: missing name or email")
        return jsonify({'error': 'Name and email are required.'}), 400
    if not valid_email(email):
        logger.warning(f"Signup failed: unusable email {email!r}")
        return jsonify({'error': 'Invalid email.'}), 400

    with store.lock:
        if store.user_exists(email):
            return jsonify({'error': 'User already exists.'}), 400
        user = {'name': name, 'email': email, 'createdAt': iso_now()}
        store.save_user(user)

    logger.info(f"User signed up: {email}")
    return jsonify(user)


@app.route('/api/users', methods=['GET'])
def api_users():
    users = store.list_users()
    users.sort(key=lambda u: (u.get('name') or '').lower())
    return jsonify(users)


@app.route('/api/user/<email>', methods=['GET'])
def api_user_get(email):
    user = store.load_user(email)
    if user is None:
        return jsonify({'error': 'User not found.'}), 404
    return jsonify(user)


@app.route('/api/user/<email>', methods=['PUT'])
def api_user_update(email):
    """Update editable profile fields."""
    data = _json_body()
    changes = {k: data[k] for k in PROFILE_FIELDS if k in data}
    if not changes:
        return jsonify({'error': 'Nothing to update.'}), 400
    bad = _non_string_field(changes, *PROFILE_FIELDS)
    if bad:
        return _type_error(bad)
    if 'name' in changes and not (changes['name'] or '').strip():
        return jsonify({'error': 'Name cannot be empty.'}), 400

    with store.lock:
        user = store.load_user(email)
        if user is None:
            return jsonify({'error': 'User not found.'}), 404
        user.update(changes)
        user['updatedAt'] = iso_now()
        store.save_user(user)

    logger.info(f"Profile updated: {email} ({', '.join(sorted(changes))})")
    return jsonify(user)


@app.route('/api/user/<email>', methods=['DELETE'])
def api_user_delete(email):
    """Delete a user along with their uploads, show and pending trades."""
    with store.lock:
        if not store.user_exists(email):
            return jsonify({'error': 'User not found.'}), 404

        cancelled = ledger.drop_user_trades(store, email)
        schedule = shows.load_schedule(store)
        dropped_show = shows.drop_owner(schedule, email)
        if dropped_show is not None:
            shows.save_schedule(store, schedule)

        store.delete_user(email)
        upload_dir = store.upload_dir(email)
        if os.path.isdir(upload_dir):
            shutil.rmtree(upload_dir)

    logger.info(f"User deleted: {email}, {cancelled} pending trades cancelled")
    if dropped_show is not None:
        _broadcast_schedule(schedule)
    return jsonify({'success': True, 'message': 'User deleted'})


@app.route('/api/upload-image', methods=['POST'])
def api_upload_image():
    """Store a profile image as uploads/<safeEmail>/profile.jpg."""
    email = request.args.get('email')
    upload = request.files.get('profileImage')
    if not email or upload is None or not upload.filename:
        return jsonify({'error': 'Missing email or file.'}), 400
    if not _allowed_image(upload.filename):
        return jsonify({'error': 'Unsupported image type.'}), 400

    with store.lock:
        user = store.load_user(email)
        if user is None:
            return jsonify({'error': 'User not found.'}), 404

        user_dir = store.upload_dir(email)
        os.makedirs(user_dir, exist_ok=True)
        upload.save(os.path.join(user_dir, 'profile.jpg'))

        user['imageUrl'] = f'/uploads/{safe_name(email)}/profile.jpg'
        store.save_user(user)

    logger.info(f"Profile image uploaded for {email}")
    return jsonify({'success': True, 'imageUrl': user['imageUrl']})


@app.route('/uploads/<email>/<filename>')
def uploaded_file(email, filename):
    if not valid_email(email):
        return jsonify({'error': 'Not found'}), 404
    return send_from_directory(store.upload_dir(email), filename)


# ============================================================================
# ProfCoin
# ============================================================================

@app.route('/api/user/update-balance', methods=['POST'])
def api_update_balance():
    """Record the balance reported by the mining client."""
    data = _json_body()
    email = data.get('email')
    if not email or data.get('balance') is None:
        return jsonify({'error': 'Missing email or balance'}), 400

    try:
        user = ledger.apply_mining_update(
            store, email, data['balance'], data.get('blocksMined'), data.get('totalEarned'))
    except ledger.TradeError as e:
        return jsonify({'error': str(e)}), e.status
    except Exception as e:
        logger.error(f"Error updating user balance: {e}")
        return jsonify({'error': 'Failed to update balance'}), 500

    return jsonify({'success': True, 'balance': user['profcoinBalance']})


@app.route('/api/user/<email>/balance', methods=['GET'])
def api_balance(email):
    user = store.load_user(email)
    if user is None:
        return jsonify({'error': 'User not found'}), 404
    return jsonify(ledger.get_balance(user))


@app.route('/api/trade', methods=['POST'])
def api_trade_create():
    """Propose a trade; the amount is escrowed from the sender."""
    data = _json_body()
    bad = _non_string_field(data, 'sender', 'recipient', 'note')
    if bad:
        return _type_error(bad)
    try:
        trade = ledger.create_trade(
            store, data.get('sender'), data.get('recipient'), data.get('amount'), data.get('note'))
    except ledger.TradeError as e:
        logger.warning(f"Trade rejected: {e}")
        return jsonify({'error': str(e)}), e.status
    except Exception as e:
        logger.error(f"Error creating trade: {e}")
        return jsonify({'error': 'Failed to create trade'}), 500

    socketio.emit('trade-updated', trade, to=_user_room(trade['recipient']))
    return jsonify({'success': True, 'trade': trade})


@app.route('/api/trades/<email>', methods=['GET'])
def api_trades_for_user(email):
    return jsonify(ledger.trades_for(store, email))


@app.route('/api/trades', methods=['GET'])
def api_trades_pending():
    return jsonify(ledger.pending_trades(store))


@app.route('/api/trade/update', methods=['POST'])
def api_trade_update():
    """Recipient accepts or rejects a trade."""
    data = _json_body()
    try:
        trade = ledger.resolve_trade(store, data.get('tradeId'), data.get('status'), data.get('userEmail'))
    except ledger.TradeError as e:
        return jsonify({'error': str(e)}), e.status
    except Exception as e:
        logger.error(f"Error updating trade: {e}")
        return jsonify({'error': 'Failed to update trade'}), 500

    socketio.emit('trade-updated', trade, to=_user_room(trade['sender']))
    return jsonify({'success': True, 'trade': trade})


@app.route('/api/trade/<trade_id>', methods=['DELETE'])
def api_trade_cancel(trade_id):
    """Sender cancels a pending trade."""
    data = _json_body()
    try:
        ledger.cancel_trade(store, trade_id, data.get('userEmail'))
    except ledger.TradeError as e:
        return jsonify({'error': str(e)}), e.status
    except Exception as e:
        logger.error(f"Error cancelling trade: {e}")
        return jsonify({'error': 'Failed to cancel trade'}), 500

    return jsonify({'success': True, 'message': 'Trade cancelled'})


# ============================================================================
# Shows
# ============================================================================

@app.route('/api/shows', methods=['GET'])
def api_shows():
    return jsonify({'slots': shows.build_slots(shows.load_schedule(store))})


@app.route('/api/shows', methods=['POST'])
def api_shows_create():
    """Book a slot. Without an hour the first free slot is used."""
    data = _json_body()
    bad = _non_string_field(data, 'email', 'title', 'description')
    if bad:
        return _type_error(bad)
    email = data.get('email')
    title = (data.get('title') or '').strip()
    if not email or not title:
        return jsonify({'error': 'email and title required'}), 400

    with store.lock:
        if not store.user_exists(email):
            return jsonify({'error': 'User not found'}), 404
        schedule = shows.load_schedule(store)
        try:
            show = shows.create_show(schedule, email, title, data.get('description'), data.get('hour'))
        except shows.ScheduleError as e:
            logger.warning(f"Show booking failed for {email}: {e}")
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    _broadcast_schedule(schedule)
    return jsonify({'success': True, 'show': show})


@app.route('/api/shows/user/<email>', methods=['GET'])
def api_show_for_user(email):
    show = shows.show_for_owner(shows.load_schedule(store), email)
    if show is None:
        return jsonify({'error': 'Show not found'}), 404
    return jsonify(show)


@app.route('/api/shows/<show_id>', methods=['PUT'])
def api_show_update(show_id):
    data = _json_body()
    bad = _non_string_field(data, 'email', *shows.EDITABLE_FIELDS)
    if bad:
        return _type_error(bad)
    with store.lock:
        schedule = shows.load_schedule(store)
        try:
            show = shows.update_show(schedule, show_id, data.get('email'), data)
        except shows.ScheduleError as e:
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    logger.info(f"Show {show_id} updated")
    _broadcast_schedule(schedule)
    return jsonify({'success': True, 'show': show})


@app.route('/api/shows/<show_id>', methods=['DELETE'])
def api_show_delete(show_id):
    data = _json_body()
    with store.lock:
        schedule = shows.load_schedule(store)
        try:
            shows.delete_show(schedule, show_id, data.get('email'))
        except shows.ScheduleError as e:
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    _broadcast_schedule(schedule)
    return jsonify({'success': True, 'message': 'Show deleted'})


@app.route('/api/shows/swap', methods=['POST'])
def api_show_swap():
    """Move into a free slot, or ask the owner of a taken slot to swap."""
    data = _json_body()
    email = data.get('email')
    if not email or data.get('targetHour') is None:
        return jsonify({'error': 'email and targetHour required'}), 400

    with store.lock:
        schedule = shows.load_schedule(store)
        try:
            outcome, record = shows.request_swap(schedule, email, data['targetHour'])
        except shows.ScheduleError as e:
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    if outcome == 'moved':
        _broadcast_schedule(schedule)
        return jsonify({'success': True, 'status': outcome, 'show': record})
    socketio.emit('swap-requested', record, to=_user_room(record['recipient']))
    return jsonify({'success': True, 'status': outcome, 'swapRequest': record})


@app.route('/api/shows/swap/<request_id>/respond', methods=['POST'])
def api_show_swap_respond(request_id):
    data = _json_body()
    with store.lock:
        schedule = shows.load_schedule(store)
        try:
            req = shows.respond_swap(schedule, request_id, data.get('email'), bool(data.get('accept')))
        except shows.ScheduleError as e:
            if e.status == 409:
                # the request is marked stale
                shows.save_schedule(store, schedule)
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    socketio.emit('swap-updated', req, to=_user_room(req['requester']))
    if req['status'] == 'accepted':
        _broadcast_schedule(schedule)
    return jsonify({'success': True, 'swapRequest': req})


@app.route('/api/shows/swap/<request_id>', methods=['DELETE'])
def api_show_swap_cancel(request_id):
    data = _json_body()
    with store.lock:
        schedule = shows.load_schedule(store)
        try:
            req = shows.cancel_swap(schedule, request_id, data.get('email'))
        except shows.ScheduleError as e:
            return jsonify({'error': str(e)}), e.status
        shows.save_schedule(store, schedule)

    return jsonify({'success': True, 'swapRequest': req})


@app.route('/api/shows/swaps/<email>', methods=['GET'])
def api_show_swaps(email):
    return jsonify(shows.swaps_for(shows.load_schedule(store), email))


@app.route('/api/stream/now-playing', methods=['GET'])
def api_now_playing():
    return jsonify(shows.now_playing(shows.load_schedule(store), _current_hour()))


# ============================================================================
# Messages
# ============================================================================

@app.route('/api/messages', methods=['GET'])
def api_messages_get():
    user1 = request.args.get('user1')
    user2 = request.args.get('user2')
    if not user1 or not user2:
        return jsonify({'error': 'Missing user1 or user2 parameters'}), 400
    return jsonify({'messages': store.read(store.conversation_path(user1, user2), [])})


@app.route('/api/messages', methods=['POST'])
def api_messages_post():
    data = _json_body()
    sender = data.get('sender')
    recipient = data.get('recipient')
    text = data.get('message')
    bad = _non_string_field(data, 'sender', 'recipient', 'message')
    if bad:
        return _type_error(bad)
    if not sender or not recipient or not text:
        return jsonify({'error': 'Missing required fields'}), 400
    try:
        timestamp = iso_timestamp(data.get('timestamp'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    new_message = {
        'id': make_id('msg'),
        'sender': sender,
        'recipient': recipient,
        'message': text,
        'timestamp': timestamp,
    }
    path = store.conversation_path(sender, recipient)
    with store.lock:
        messages = store.read(path, [])
        messages.append(new_message)
        store.write(path, messages)

    socketio.emit('new-message', new_message, to=_user_room(recipient))
    socketio.emit('new-message', new_message, to=_user_room(sender))
    return jsonify({'success': True, 'message': new_message})


@app.route('/api/conversations/<email>', methods=['GET'])
def api_conversations(email):
    """Conversation partners of ``email``, most recent message first."""
    conversations = []
    messages_dir = os.path.join(store.root, 'messages')
    for name in os.listdir(messages_dir):
        if not name.endswith('.json'):
            continue
        messages = store.read(os.path.join(messages_dir, name), [])
        if not messages:
            continue
        last = messages[-1]
        if email not in (last['sender'], last['recipient']):
            continue
        partner = last['recipient'] if last['sender'] == email else last['sender']
        conversations.append({
            'with': partner,
            'lastMessage': last,
            'count': len(messages),
            'sortKey': _stamp_key(last.get('timestamp')),
        })
    conversations.sort(key=lambda c: c.pop('sortKey'), reverse=True)
    return jsonify({'conversations': conversations})


# ============================================================================
# News
# ============================================================================

def _load_news():
    news = store.read(store.news_path, {'stories': []})
    news.setdefault('stories', [])
    return news


def _find_story(news, story_id):
    for story in news['stories']:
        if story['id'] == story_id:
            return story
    return None


@app.route('/api/news', methods=['GET'])
def api_news_get():
    return jsonify(_load_news())


@app.route('/api/news', methods=['POST'])
def api_news_post():
    data = _json_body()
    title = data.get('title')
    content = data.get('content')
    author = data.get('author')
    bad = _non_string_field(data, 'title', 'content', 'author')
    if bad:
        return _type_error(bad)
    if not title or not content or not author:
        return jsonify({'error': 'Missing required fields'}), 400
    try:
        timestamp = iso_timestamp(data.get('timestamp'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    new_story = {
        'id': make_id('story'),
        'title': title,
        'content': content,
        'author': author,
        'timestamp': timestamp,
        'likes': 0,
        'comments': []
    }
    with store.lock:
        news = _load_news()
        news['stories'].insert(0, new_story)
        store.write(store.news_path, news)

    logger.info(f"Story {new_story['id']} posted by {author}")
    socketio.emit('new-story', new_story, to=NEWS_ROOM)
    return jsonify({'success': True, 'story': new_story})


@app.route('/api/news/<story_id>/like', methods=['POST'])
def api_news_like(story_id):
    with store.lock:
        news = _load_news()
        story = _find_story(news, story_id)
        if story is None:
            return jsonify({'error': 'Story not found'}), 404
        story['likes'] = (story.get('likes') or 0) + 1
        store.write(store.news_path, news)

    update = {'storyId': story_id, 'likes': story['likes']}
    socketio.emit('engagement-updated', update, to=NEWS_ROOM)
    return jsonify({'success': True, **update})


@app.route('/api/news/<story_id>/comments', methods=['POST'])
def api_news_comment(story_id):
    data = _json_body()
    bad = _non_string_field(data, 'author', 'text')
    if bad:
        return _type_error(bad)
    author = data.get('author')
    text = (data.get('text') or '').strip()
    if not author or not text:
        return jsonify({'error': 'Missing required fields'}), 400

    comment = {'id': make_id('comment'), 'author': author, 'text': text, 'timestamp': iso_now()}
    with store.lock:
        news = _load_news()
        story = _find_story(news, story_id)
        if story is None:
            return jsonify({'error': 'Story not found'}), 404
        story.setdefault('comments', []).append(comment)
        store.write(store.news_path, news)

    socketio.emit('engagement-updated', {'storyId': story_id, 'comment': comment}, to=NEWS_ROOM)
    return jsonify({'success': True, 'comment': comment})


# ============================================================================
# Socket.IO
# ============================================================================

@socketio.on('connect')
def handle_connect():
    logger.info(f"User connected: {request.sid}")
    join_room(NEWS_ROOM)


@socketio.on('join')
def handle_join(data):
    email = (data or {}).get('email')
    if email:
        join_room(_user_room(email))
        emit('joined', {'room': _user_room(email)})


@socketio.on('story-engagement')
def handle_story_engagement(data):
    emit('engagement-updated', data, to=NEWS_ROOM, include_self=False)


@socketio.on('disconnect')
def handle_disconnect():
    logger.info(f"User disconnected: {request.sid}")


# ============================================================================
# Service & static files
# ============================================================================

@app.route('/api/test', methods=['GET'])
def api_test():
    return jsonify({
        'status': 'ok',
        'message': 'Prof server is reachable',
        'timestamp': iso_now()
    })


@app.route('/')
def index():
    """Serve the main HTML file."""
    return send_from_directory(app.static_folder, 'index.html')


@app.route('/<path:path>')
def static_files(path):
    """Serve static files, falling back to index.html for client-side routing."""
    if os.path.isfile(os.path.join(app.static_folder, path)):
        return send_from_directory(app.static_folder, path)
    return send_from_directory(app.static_folder, 'index.html')


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == '__main__':
    logger.info("=" * 60)
    logger.info("Prof Server Starting (Flask-SocketIO)")
    logger.info(f"Port: {settings.PORT}")
    logger.info(f"Static dir: {app.static_folder}")
    logger.info(f"Data dir: {store.root}")
    logger.info(f"HTTPS: {settings.USE_HTTPS}")
    logger.info("=" * 60)

    options = {}
    if settings.USE_HTTPS:
        options['ssl_context'] = (settings.CERT_FILE, settings.KEY_FILE)
    socketio.run(app, host=settings.HOST, port=settings.PORT, debug=settings.DEBUG,
                 allow_unsafe_werkzeug=True, **options)
