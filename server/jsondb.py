"""
Flat JSON file storage for the Prof server.

Layout of the data directory:

    users/<safeEmail>.json          one profile per user
    messages/<safeConversation>.json list of messages between two users
    uploads/<safeEmail>/profile.jpg  profile images
    news-stories.json               {"stories": [...]}, newest first
    shows.json                      {"shows": [...], "swapRequests": [...]}
    trades.json                     list of ProfCoin trades

File names are URL-component encoded exactly like a browser's
``encodeURIComponent`` so data written by older clients keeps resolving.
"""
import copy
import datetime
import json
import logging
import math
import numbers
import os
import threading
import time
import uuid
from urllib.parse import quote

logger = logging.getLogger(__name__)

_UNESCAPED = "!~*'()"


def safe_name(value):
    return quote(value, safe=_UNESCAPED)


def valid_email(value):
    """True when ``value`` can name a user file and upload directory."""
    return (isinstance(value, str) and value == value.strip()
            and value not in ('', '.', '..') and '/' not in value and '\\' not in value)


def _format_iso(moment):
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f'{moment.microsecond // 1000:03d}Z'


def iso_now():
    """UTC timestamp in the same shape as JavaScript's Date.toISOString()."""
    return _format_iso(datetime.datetime.now(datetime.timezone.utc))


def iso_timestamp(value):
    """Normalise a client timestamp to an ISO string.

    Strings are kept as sent, numbers are read as milliseconds since the epoch
    (JavaScript's Date.now()) and a missing value means now. Anything else
    raises ValueError.
    """
    if value is None or value == '':
        return iso_now()
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
        raise ValueError('timestamp must be an ISO string or milliseconds since the epoch')
    try:
        moment = datetime.datetime.fromtimestamp(value / 1000, datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise ValueError('timestamp out of range')
    return _format_iso(moment)


def make_id(prefix):
    """Record id such as ``trade_1718000000000_3f9a1c2b7``."""
    return f'{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}'


def conversation_id(user1, user2):
    """Both participants sorted and joined, so either side finds the same file."""
    return '|'.join(sorted([user1, user2]))


class JsonStore:
    """Read/write JSON files under ``root`` with an mtime-validated cache."""

    def __init__(self, root):
        self.root = str(root)
        self.lock = threading.RLock()
        self._cache = {}
        for sub in ('users', 'messages', 'uploads'):
            os.makedirs(os.path.join(self.root, sub), exist_ok=True)

    # paths

    @property
    def news_path(self):
        return os.path.join(self.root, 'news-stories.json')

    @property
    def shows_path(self):
        return os.path.join(self.root, 'shows.json')

    @property
    def trades_path(self):
        return os.path.join(self.root, 'trades.json')

    @property
    def users_dir(self):
        return os.path.join(self.root, 'users')

    @property
    def uploads_dir(self):
        return os.path.join(self.root, 'uploads')

    def _user_name(self, email):
        if not valid_email(email):
            raise ValueError(f'invalid email: {email!r}')
        return safe_name(email)

    def user_path(self, email):
        return os.path.join(self.users_dir, f'{self._user_name(email)}.json')

    def upload_dir(self, email):
        path = os.path.join(self.uploads_dir, self._user_name(email))
        if os.path.dirname(os.path.abspath(path)) != os.path.abspath(self.uploads_dir):
            raise ValueError(f'invalid email: {email!r}')
        return path

    def conversation_path(self, user1, user2):
        return os.path.join(self.root, 'messages', f'{safe_name(conversation_id(user1, user2))}.json')

    # raw access

    def read(self, path, default=None):
        """Load ``path``. Missing or unparsable files yield a copy of ``default``."""
        if not os.path.exists(path):
            self._cache.pop(path, None)
            return copy.deepcopy(default)

        current_mtime = os.path.getmtime(path)
        cached = self._cache.get(path)
        if cached is not None and cached[0] == current_mtime:
            return copy.deepcopy(cached[1])

        with open(path, 'r', encoding='utf-8') as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as e:
                logger.error(f"Failed to parse {path}: {e}")
                self._cache.pop(path, None)
                return copy.deepcopy(default)
        self._cache[path] = (current_mtime, data)
        return copy.deepcopy(data)

    def write(self, path, data):
        """Persist ``data`` atomically (temp file + rename) and refresh the cache."""
        tmp_file = path + '.tmp'
        try:
            with open(tmp_file, 'w', encoding='utf-8') as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_file, path)
        except OSError as e:
            logger.error(f"Failed to save {path}: {e}")
            self._cache.pop(path, None)
            raise
        self._cache[path] = (os.path.getmtime(path), copy.deepcopy(data))

    def remove(self, path):
        self._cache.pop(path, None)
        if os.path.exists(path):
            os.remove(path)

    # users

    def load_user(self, email):
        if not valid_email(email):
            return None
        return self.read(self.user_path(email))

    def save_user(self, user):
        self.write(self.user_path(user['email']), user)

    def user_exists(self, email):
        if not valid_email(email):
            return False
        return os.path.exists(self.user_path(email))

    def delete_user(self, email):
        self.remove(self.user_path(email))

    def list_users(self):
        users = []
        for name in sorted(os.listdir(self.users_dir)):
            if not name.endswith('.json'):
                continue
            user = self.read(os.path.join(self.users_dir, name))
            if user:
                users.append(user)
        return users
