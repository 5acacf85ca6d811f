# atm.py
import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import pandas as pd

from config import settings
from security import PasswordHasher, RateLimiter, InputValidator
from store import AccountRepository, User, Transaction, DEPOSIT, WITHDRAWAL, TRANSACTION_TYPES
from suggestions import SuggestionEngine, SuggestionRequest

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 3

input_validator = InputValidator()


def format_currency(amount):
    return f"₹{amount:,.2f}"


def recent_amounts(user: User, transaction_type: str, limit: int = HISTORY_WINDOW) -> List[float]:
    """Amounts of the latest transactions of one type, most recent first"""
    return [t.amount for t in user.transactions if t.type == transaction_type][:limit]


def history_frame(user: User) -> pd.DataFrame:
    """Transaction history as a DataFrame for tables, charts and CSV export"""
    columns = ['id', 'type', 'amount', 'date']
    df = pd.DataFrame([vars(t) for t in user.transactions], columns=columns)
    if df.empty:
        return df
    df['date'] = pd.to_datetime(df['date'], utc=True)
    df['signed_amount'] = df['amount'].where(df['type'] == DEPOSIT, -df['amount'])
    return df.sort_values('date', ascending=False, kind='stable').reset_index(drop=True)


class Bank:
    """Account operations behind the ATM screens.

    Every user-facing operation returns ``(success, message, ...)`` so the UI
    can show the message directly; nothing here raises for bad input.
    """

    def __init__(
        self,
        repository: AccountRepository,
        hasher: Optional[PasswordHasher] = None,
        rate_limiter: Optional[RateLimiter] = None,
        engine: Optional[SuggestionEngine] = None,
        starting_balance: float = settings.STARTING_BALANCE,
    ):
        self.repository = repository
        self.hasher = hasher or PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
        self.rate_limiter = rate_limiter or RateLimiter(
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lockout_minutes=settings.LOCKOUT_MINUTES,
        )
        self.engine = engine or SuggestionEngine()
        self.starting_balance = starting_balance
        # Sessions share one Bank; read-check-write on an account happens under this lock
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def signup(self, username, password, name, email, phone, pin, address="") -> Tuple[bool, str, Optional[User]]:
        for error in (
            input_validator.validate_username(username),
            input_validator.validate_password(password),
            input_validator.validate_name(name),
            input_validator.validate_email(email),
            input_validator.validate_phone(phone),
            input_validator.validate_pin(pin),
        ):
            if error:
                return False, error, None

        username = username.strip()
        with self._lock:
            if self.repository.find_by_username(username):
                return False, "Username is already taken.", None

            user = User(
                id=uuid.uuid4().hex,
                username=username,
                password_hash=self.hasher.hash_password(password),
                name=input_validator.sanitize_text(name),
                email=email.strip(),
                phone=phone.strip(),
                address=input_validator.sanitize_text(address),
                pin_hash=self.hasher.hash_password(pin.strip()),
                balance=self.starting_balance,
            )
            self.repository.put(user)
        logger.info("Created account %s for %s", user.id, username)
        return True, "Welcome to ZenBank! Your account is ready.", user

    def login(self, username, password) -> Tuple[bool, str, Optional[User]]:
        key = (username or "").strip().lower()
        if not key or not password:
            return False, "Username and password are required.", None

        is_locked, lock_message = self.rate_limiter.is_locked_out(key)
        if is_locked:
            logger.warning("Login blocked for locked-out user %s", key)
            return False, lock_message, None

        user = self.repository.find_by_username(key)
        if user and self.hasher.verify_password(password, user.password_hash):
            self.rate_limiter.reset_attempts(key)
            logger.info("User %s logged in", user.id)
            return True, f"Welcome back, {user.username}!", user

        self.rate_limiter.record_attempt(key)
        attempts_left = self.rate_limiter.attempts_left(key)
        logger.warning("Failed login for %s (%d attempts left)", key, attempts_left)
        if attempts_left > 0:
            return False, f"Invalid username or password. {attempts_left} attempts remaining.", None
        return False, "Invalid username or password. Account is temporarily locked.", None

    def logout(self, user_id, reason="user"):
        logger.info("User %s logged out (%s)", user_id, reason)
        if reason == "idle":
            return "You have been logged out due to inactivity. Please log in again to continue."
        return "You have been successfully logged out."

    # ------------------------------------------------------------------
    # PIN
    # ------------------------------------------------------------------

    def _load(self, user_id) -> Optional[User]:
        user = self.repository.get(user_id)
        if user is None:
            logger.error("Unknown account %s", user_id)
        return user

    def verify_pin(self, user_id, pin) -> Tuple[bool, str]:
        error = input_validator.validate_pin(pin)
        if error:
            return False, error
        user = self._load(user_id)
        if user is None:
            return False, "Account not found."
        if not self.hasher.verify_password(pin.strip(), user.pin_hash):
            return False, "The PIN you entered is incorrect."
        return True, "PIN correct."

    def change_pin(self, user_id, current_pin, new_pin) -> Tuple[bool, str]:
        error = input_validator.validate_pin(new_pin)
        with self._lock:
            ok, message = self.verify_pin(user_id, current_pin)
            if not ok:
                return False, message
            if error:
                return False, error
            user = self._load(user_id)
            user.pin_hash = self.hasher.hash_password(new_pin.strip())
            self.repository.put(user)
        logger.info("PIN changed for %s", user_id)
        return True, "PIN changed successfully."

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def deposit(self, user_id, amount, pin):
        return self._transact(user_id, DEPOSIT, amount, pin)

    def withdraw(self, user_id, amount, pin):
        return self._transact(user_id, WITHDRAWAL, amount, pin)

    def _transact(self, user_id, transaction_type, amount, pin) -> Tuple[bool, str, Optional[User]]:
        amount_error = input_validator.validate_amount(amount)
        if amount_error:
            return False, amount_error, None
        amount = float(amount)

        with self._lock:
            ok, message = self.verify_pin(user_id, pin)
            if not ok:
                return False, message, None

            user = self._load(user_id)
            if transaction_type == WITHDRAWAL and amount > user.balance:
                return False, "Insufficient funds for this withdrawal.", None

            user.balance += amount if transaction_type == DEPOSIT else -amount
            user.transactions.insert(0, Transaction(
                id=uuid.uuid4().hex,
                type=transaction_type,
                amount=amount,
                date=datetime.now(timezone.utc).isoformat(),
            ))
            self.repository.put(user)
        logger.info("%s of %.2f on %s", transaction_type, amount, user_id)

        verb = "deposited" if transaction_type == DEPOSIT else "withdrew"
        return True, f"Successfully {verb} {format_currency(amount)}.", user

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_profile(self, user_id, name, email, phone, address="") -> Tuple[bool, str, Optional[User]]:
        for error in (
            input_validator.validate_name(name),
            input_validator.validate_email(email),
            input_validator.validate_phone(phone),
        ):
            if error:
                return False, error, None

        with self._lock:
            user = self._load(user_id)
            if user is None:
                return False, "Account not found.", None
            user.name = input_validator.sanitize_text(name)
            user.email = email.strip()
            user.phone = phone.strip()
            user.address = input_validator.sanitize_text(address)
            self.repository.put(user)
        return True, "Profile updated.", user

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def suggest_amounts(self, user_id, transaction_type, previous=None) -> List[float]:
        """Three suggested amounts for the next transaction, ascending"""
        if transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"Unknown transaction type: {transaction_type}")
        user = self._load(user_id)
        history = recent_amounts(user, transaction_type) if user else []
        result = self.engine.suggest(SuggestionRequest(
            transaction_history=history,
            transaction_type=transaction_type,
            previous_suggestions=list(previous) if previous else None,
        ))
        return sorted(result.recommended_amounts)
