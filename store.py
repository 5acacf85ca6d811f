# store.py
"""Account records and the repositories that hold them.

Accounts live behind an ``AccountRepository`` that the auth and transaction
code receives explicitly. ``JsonAccountRepository`` keeps everything in one
JSON file keyed by user id; ``InMemoryAccountRepository`` is used by tests.
"""
import os
import json
import logging
import threading
from copy import deepcopy
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
TRANSACTION_TYPES = (DEPOSIT, WITHDRAWAL)


@dataclass
class Transaction:
    id: str
    type: str
    amount: float
    date: str


@dataclass
class User:
    id: str
    username: str
    password_hash: str
    name: str
    email: str
    phone: str
    address: str
    pin_hash: str
    balance: float
    transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        data = dict(data)
        data["transactions"] = [Transaction(**t) for t in data.get("transactions", [])]
        return cls(**data)


class AccountRepository:
    """get / list / put over User records"""

    def get(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def list(self) -> List[User]:
        raise NotImplementedError

    def put(self, user: User) -> None:
        raise NotImplementedError

    def find_by_username(self, username: str) -> Optional[User]:
        wanted = (username or "").strip().lower()
        for user in self.list():
            if user.username.lower() == wanted:
                return user
        return None


class InMemoryAccountRepository(AccountRepository):

    def __init__(self, users: Optional[List[User]] = None):
        self._users: Dict[str, User] = {}
        for user in users or []:
            self.put(user)

    def get(self, user_id):
        user = self._users.get(user_id)
        return deepcopy(user) if user else None

    def list(self):
        return [deepcopy(u) for u in self._users.values()]

    def put(self, user):
        self._users[user.id] = deepcopy(user)


class JsonAccountRepository(AccountRepository):
    """All accounts in a single JSON document, rewritten on every put"""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, dict]] = None

    def _load(self) -> Dict[str, dict]:
        if self._data is None:
            self._data = {}
            if os.path.exists(self.path):
                try:
                    with open(self.path, 'r', encoding='utf-8') as f:
                        raw = json.load(f)
                    if isinstance(raw, dict):
                        self._data = raw
                    else:
                        logger.error("Ignoring account file %s: expected an object", self.path)
                except (OSError, ValueError) as e:
                    logger.error("Error loading accounts from %s: %s", self.path, e)
        return self._data

    def _save(self):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f, indent=4)
        os.replace(tmp_path, self.path)

    def get(self, user_id):
        with self._lock:
            record = self._load().get(user_id)
        return User.from_dict(record) if record else None

    def list(self):
        with self._lock:
            records = list(self._load().values())
        return [User.from_dict(r) for r in records]

    def put(self, user):
        with self._lock:
            self._load()[user.id] = user.to_dict()
            self._save()
        logger.debug("Saved account %s", user.id)
