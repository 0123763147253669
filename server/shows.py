"""
Radio show scheduling.

The broadcast day has one slot per hour. A user owns at most one show and a
slot holds at most one show. Moving into a free slot happens immediately;
moving into a taken slot needs the other owner's consent, so it is stored
as a swap request until they answer.

shows.json:

    {
        "shows": [{"id", "owner", "title", "description", "hour", "createdAt"}],
        "swapRequests": [{"id", "requester", "recipient", "fromShowId",
                          "toShowId", "fromHour", "toHour", "status",
                          "createdAt"}]
    }
"""
import logging

from jsondb import iso_now, make_id
from settings import SLOTS_PER_DAY

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('title', 'description')


class ScheduleError(ValueError):
    """A scheduling request that cannot be honoured. ``status`` is the HTTP code."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.status = status


def empty_schedule():
    return {'shows': [], 'swapRequests': []}


def load_schedule(store):
    data = store.read(store.shows_path, empty_schedule())
    data.setdefault('shows', [])
    data.setdefault('swapRequests', [])
    return data


def save_schedule(store, data):
    store.write(store.shows_path, data)


def parse_hour(value):
    """Return ``value`` as a slot index, raising ScheduleError when out of range."""
    if isinstance(value, bool):
        raise ScheduleError('hour must be an integer between 0 and 23')
    try:
        hour = int(value)
    except (TypeError, ValueError):
        raise ScheduleError('hour must be an integer between 0 and 23')
    if hour != value and str(hour) != str(value).strip():
        raise ScheduleError('hour must be an integer between 0 and 23')
    if not 0 <= hour < SLOTS_PER_DAY:
        raise ScheduleError('hour must be an integer between 0 and 23')
    return hour


def build_slots(data):
    slots = [{'hour': h, 'show': None} for h in range(SLOTS_PER_DAY)]
    for show in data['shows']:
        slots[show['hour']]['show'] = show
    return slots


def show_at(data, hour):
    for show in data['shows']:
        if show['hour'] == hour:
            return show
    return None


def show_for_owner(data, email):
    for show in data['shows']:
        if show['owner'] == email:
            return show
    return None


def find_show(data, show_id):
    for show in data['shows']:
        if show['id'] == show_id:
            return show
    return None


def find_free_slot(data):
    """First free hour scanning from midnight, or None when the day is full."""
    taken = {show['hour'] for show in data['shows']}
    for hour in range(SLOTS_PER_DAY):
        if hour not in taken:
            return hour
    return None


def create_show(data, owner, title, description='', hour=None):
    if show_for_owner(data, owner) is not None:
        raise ScheduleError('User already has a show', 409)

    if hour is None:
        hour = find_free_slot(data)
        if hour is None:
            raise ScheduleError('Schedule is full', 409)
    else:
        hour = parse_hour(hour)
        if show_at(data, hour) is not None:
            raise ScheduleError('Slot already taken', 409)

    show = {
        'id': make_id('show'),
        'owner': owner,
        'title': title,
        'description': description or '',
        'hour': hour,
        'createdAt': iso_now(),
    }
    data['shows'].append(show)
    logger.info(f"Show {show['id']} scheduled at {hour:02d}:00 for {owner}")
    return show


def _owned_show(data, show_id, email):
    show = find_show(data, show_id)
    if show is None:
        raise ScheduleError('Show not found', 404)
    if show['owner'] != email:
        raise ScheduleError('Unauthorized to change this show', 403)
    return show


def update_show(data, show_id, email, fields):
    show = _owned_show(data, show_id, email)
    changes = {k: fields[k] for k in EDITABLE_FIELDS if k in fields}
    if not changes:
        raise ScheduleError('Nothing to update')
    for key, value in changes.items():
        if value is not None and not isinstance(value, str):
            raise ScheduleError(f'{key} must be a string')
    if 'title' in changes and not (changes['title'] or '').strip():
        raise ScheduleError('title cannot be empty')
    show.update(changes)
    show['updatedAt'] = iso_now()
    return show


def _cancel_requests_for(data, show_id):
    for req in data['swapRequests']:
        if req['status'] == 'pending' and show_id in (req['fromShowId'], req['toShowId']):
            req['status'] = 'cancelled'
            req['updatedAt'] = iso_now()


def delete_show(data, show_id, email):
    show = _owned_show(data, show_id, email)
    data['shows'].remove(show)
    _cancel_requests_for(data, show_id)
    logger.info(f"Show {show_id} removed, slot {show['hour']:02d}:00 is free")
    return show


def drop_owner(data, email):
    """Remove ``email``'s show, if any. Returns the removed show."""
    show = show_for_owner(data, email)
    if show is None:
        return None
    data['shows'].remove(show)
    _cancel_requests_for(data, show['id'])
    return show


def request_swap(data, email, target_hour):
    """Move ``email``'s show to ``target_hour``.

    Returns ``('moved', show)`` when the slot was free and
    ``('requested', swap_request)`` when its owner has to agree first.
    """
    show = show_for_owner(data, email)
    if show is None:
        raise ScheduleError('User has no show', 404)
    target_hour = parse_hour(target_hour)
    if target_hour == show['hour']:
        raise ScheduleError('Show is already in that slot')

    other = show_at(data, target_hour)
    if other is None:
        _cancel_requests_for(data, show['id'])
        show['hour'] = target_hour
        show['updatedAt'] = iso_now()
        logger.info(f"Show {show['id']} moved to free slot {target_hour:02d}:00")
        return 'moved', show

    for req in data['swapRequests']:
        if (req['status'] == 'pending' and req['fromShowId'] == show['id']
                and req['toShowId'] == other['id']):
            raise ScheduleError('Swap already requested', 409)

    req = {
        'id': make_id('swap'),
        'requester': email,
        'recipient': other['owner'],
        'fromShowId': show['id'],
        'toShowId': other['id'],
        'fromHour': show['hour'],
        'toHour': other['hour'],
        'status': 'pending',
        'createdAt': iso_now(),
    }
    data['swapRequests'].append(req)
    logger.info(f"Swap {req['id']} requested: {email} -> {other['owner']}")
    return 'requested', req


def find_swap(data, request_id):
    for req in data['swapRequests']:
        if req['id'] == request_id:
            return req
    return None


def respond_swap(data, request_id, email, accept):
    req = find_swap(data, request_id)
    if req is None:
        raise ScheduleError('Swap request not found', 404)
    if req['recipient'] != email:
        raise ScheduleError('Unauthorized to answer this swap', 403)
    if req['status'] != 'pending':
        raise ScheduleError('Swap already processed')

    req['updatedAt'] = iso_now()
    if not accept:
        req['status'] = 'rejected'
        return req

    mine = find_show(data, req['fromShowId'])
    theirs = find_show(data, req['toShowId'])
    if (mine is None or theirs is None or mine['hour'] != req['fromHour']
            or theirs['hour'] != req['toHour']):
        req['status'] = 'stale'
        raise ScheduleError('Schedule changed since the swap was requested', 409)

    mine['hour'], theirs['hour'] = theirs['hour'], mine['hour']
    mine['updatedAt'] = theirs['updatedAt'] = req['updatedAt']
    req['status'] = 'accepted'
    logger.info(f"Swap {request_id} accepted: {mine['id']} <-> {theirs['id']}")
    return req


def cancel_swap(data, request_id, email):
    req = find_swap(data, request_id)
    if req is None:
        raise ScheduleError('Swap request not found', 404)
    if req['requester'] != email:
        raise ScheduleError('Unauthorized to cancel this swap', 403)
    if req['status'] != 'pending':
        raise ScheduleError('Swap already processed')
    req['status'] = 'cancelled'
    req['updatedAt'] = iso_now()
    return req


def swaps_for(data, email):
    return [r for r in data['swapRequests'] if email in (r['requester'], r['recipient'])]


def now_playing(data, hour):
    """Show on air at ``hour`` and the next scheduled one after it."""
    current = show_at(data, hour)
    upcoming = None
    for step in range(1, SLOTS_PER_DAY + 1):
        candidate = show_at(data, (hour + step) % SLOTS_PER_DAY)
        if candidate is not None and candidate is not current:
            upcoming = candidate
            break
    return {'hour': hour, 'current': current, 'next': upcoming}
