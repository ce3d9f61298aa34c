'''
Best-effort progress notifications.

``publish(topic, payload)`` sends one event to one room: the topic is the
room (``user-<id>`` or ``contest-<id>``) and ``payload['event']`` names the
event. Delivery failures are logged and never fail the judging job.
'''
from typing import Optional

import requests

from judge import config
from judge.utils import logger

SUBMISSION_RESULT = 'submission-result'
SUBMISSION_UPDATE = 'submission-update'


def user_room(user_id) -> str:
    return f'user-{user_id}'


def contest_room(contest_id) -> str:
    return f'contest-{contest_id}'


class Notifier:

    def publish(self, topic: str, payload: dict):
        raise NotImplementedError


class LogNotifier(Notifier):
    '''Only logs the event, used when no realtime gateway is configured.'''

    def publish(self, topic, payload):
        logger().info(f'notify [topic={topic}, event={payload.get("event")}]')


class HttpNotifier(Notifier):
    '''POST ``{"room", "event", "data"}`` to the realtime gateway.'''

    def __init__(self,
                 url: str = config.NOTIFY_URL,
                 token: str = config.SANDBOX_TOKEN,
                 timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, topic, payload):
        data = dict(payload)
        event = data.pop('event', None)
        resp = self.session.post(
            self.url,
            json={
                'room': topic,
                'event': event,
                'data': data,
                'token': self.token,
            },
            timeout=self.timeout,
        )
        logger().debug(
            f'get notify response: [{resp.status_code}] {resp.text}')
        resp.raise_for_status()


def make_notifier() -> Notifier:
    if config.NOTIFY_URL:
        return HttpNotifier()
    return LogNotifier()


def safe_publish(notifier: Optional[Notifier], topic: str,
                 payload: dict) -> bool:
    if notifier is None:
        return False
    try:
        notifier.publish(topic, payload)
        return True
    except Exception as exc:
        logger().warning('notification dropped [topic=%s]: %s', topic, exc)
        return False
