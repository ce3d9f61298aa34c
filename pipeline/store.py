'''
Document store collaborator.

The pipeline needs find / find-by-id / update-by-id with atomic
single-document writes. ``update_by_id`` understands the ``$set``, ``$inc``,
``$push``, ``$addToSet`` and ``$pull`` operators on dotted paths, and an
optional ``guard`` filter: the write happens only if the current document
matches it, which is how idempotent side effects are claimed.
'''
import copy
import threading
from typing import List, Optional

import requests

from judge import config
from judge.exception import StoreError
from judge.utils import logger

_MISSING = object()


def _get_path(doc: dict, path: str):
    node = doc
    for part in path.split('.'):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _set_path(doc: dict, path: str, value):
    parts = path.split('.')
    node = doc
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _equals(value, target) -> bool:
    if isinstance(value, list) and not isinstance(target, list):
        return target in value
    return value == target


def matches(doc: dict, query: Optional[dict]) -> bool:
    for path, cond in (query or {}).items():
        value = _get_path(doc, path)
        if isinstance(cond, dict) and any(k.startswith('$') for k in cond):
            for op, target in cond.items():
                if op == '$ne':
                    if value is not _MISSING and _equals(value, target):
                        return False
                elif op == '$in':
                    if value is _MISSING or not any(
                            _equals(value, t) for t in target):
                        return False
                elif op == '$exists':
                    if (value is not _MISSING) != bool(target):
                        return False
                else:
                    raise ValueError(f'unsupported query operator {op}')
        elif value is _MISSING or not _equals(value, cond):
            return False
    return True


def apply_update(doc: dict, update: dict) -> dict:
    for op, fields in update.items():
        for path, value in fields.items():
            current = _get_path(doc, path)
            if op == '$set':
                _set_path(doc, path, value)
            elif op == '$inc':
                base = 0 if current is _MISSING else current
                _set_path(doc, path, base + value)
            elif op in ('$push', '$addToSet', '$pull'):
                items = [] if current is _MISSING else list(current)
                if op == '$push':
                    items.append(value)
                elif op == '$addToSet':
                    if value not in items:
                        items.append(value)
                else:
                    items = [i for i in items if i != value]
                _set_path(doc, path, items)
            else:
                raise ValueError(f'unsupported update operator {op}')
    return doc


class DocumentStore:

    def find_by_id(self, collection: str, doc_id) -> Optional[dict]:
        raise NotImplementedError

    def find(self, collection: str, query: dict) -> List[dict]:
        raise NotImplementedError

    def insert(self, collection: str, doc: dict) -> dict:
        raise NotImplementedError

    def update_by_id(self,
                     collection: str,
                     doc_id,
                     update: dict,
                     guard: Optional[dict] = None) -> Optional[dict]:
        '''Apply ``update`` atomically; None if missing or guard failed.'''
        raise NotImplementedError


class MemoryStore(DocumentStore):
    '''Thread-safe in-process store, used locally and in tests.'''

    def __init__(self):
        self._lock = threading.Lock()
        self._collections = {}

    def _coll(self, collection: str) -> dict:
        return self._collections.setdefault(collection, {})

    def find_by_id(self, collection, doc_id):
        with self._lock:
            doc = self._coll(collection).get(str(doc_id))
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection, query):
        with self._lock:
            return [
                copy.deepcopy(d) for d in self._coll(collection).values()
                if matches(d, query)
            ]

    def insert(self, collection, doc):
        doc = copy.deepcopy(doc)
        if '_id' not in doc:
            raise ValueError('document needs an _id')
        doc['_id'] = str(doc['_id'])
        with self._lock:
            coll = self._coll(collection)
            if doc['_id'] in coll:
                raise StoreError(f'duplicated id {doc["_id"]} in {collection}')
            coll[doc['_id']] = doc
        return copy.deepcopy(doc)

    def update_by_id(self, collection, doc_id, update, guard=None):
        with self._lock:
            doc = self._coll(collection).get(str(doc_id))
            if doc is None or not matches(doc, guard):
                return None
            updated = apply_update(copy.deepcopy(doc), update)
            self._coll(collection)[str(doc_id)] = updated
            return copy.deepcopy(updated)


class BackendStore(DocumentStore):
    '''Store backed by the platform's REST API.

    ``GET  {api}/{collection}/{id}``       -> document
    ``POST {api}/{collection}/query``      -> ``{"data": [documents]}``
    ``PATCH {api}/{collection}/{id}``      -> updated document, 409 on guard
    '''

    def __init__(self,
                 api: str = config.BACKEND_API,
                 token: str = config.SANDBOX_TOKEN,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.api = api.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            resp = self.session.request(
                method,
                f'{self.api}{path}',
                params={'token': self.token},
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise StoreError(f'backend unreachable: {exc}') from exc
        if resp.status_code >= 500:
            logger().error(f'backend error [resp: {resp.text}]')
            raise StoreError(f'backend error {resp.status_code}')
        return resp

    def find_by_id(self, collection, doc_id):
        resp = self._call('GET', f'/{collection}/{doc_id}')
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise StoreError(f'find {collection}/{doc_id} failed')
        return resp.json().get('data')

    def find(self, collection, query):
        resp = self._call('POST', f'/{collection}/query', json=query)
        if not resp.ok:
            raise StoreError(f'query {collection} failed')
        return resp.json().get('data', [])

    def insert(self, collection, doc):
        resp = self._call('POST', f'/{collection}', json=doc)
        if not resp.ok:
            raise StoreError(f'insert into {collection} failed')
        return resp.json().get('data', doc)

    def update_by_id(self, collection, doc_id, update, guard=None):
        resp = self._call('PATCH',
                          f'/{collection}/{doc_id}',
                          json={
                              'update': update,
                              'guard': guard or {},
                          })
        if resp.status_code in (404, 409):
            return None
        if not resp.ok:
            raise StoreError(f'update {collection}/{doc_id} failed')
        return resp.json().get('data')
