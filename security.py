# security.py
import re
import bcrypt
import math
import threading
from datetime import datetime, timedelta
from typing import Optional, Tuple
from collections import defaultdict

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordHasher:
    """Hash and verify passwords and PINs with bcrypt"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
        return hashed.decode('utf-8')

    def verify_password(self, password: str, hashed: str) -> bool:
        if not password or not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except ValueError:
            # Malformed stored hash
            return False


class RateLimiter:
    """Rate limiting for login attempts"""

    def __init__(self, max_attempts: int = 5, lockout_minutes: int = 15, clock=datetime.now):
        self.max_attempts = max_attempts
        self.lockout_minutes = lockout_minutes
        self.clock = clock
        self.attempts = defaultdict(list)
        self._lock = threading.Lock()

    def _prune(self, identifier: str, now: datetime):
        # Caller holds self._lock
        cutoff = now - timedelta(minutes=self.lockout_minutes)
        self.attempts[identifier] = [t for t in self.attempts[identifier] if t > cutoff]

    def record_attempt(self, identifier: str):
        """Record a failed login attempt"""
        with self._lock:
            now = self.clock()
            self.attempts[identifier].append(now)
            self._prune(identifier, now)

    def attempts_left(self, identifier: str) -> int:
        with self._lock:
            self._prune(identifier, self.clock())
            return max(0, self.max_attempts - len(self.attempts[identifier]))

    def is_locked_out(self, identifier: str) -> Tuple[bool, Optional[str]]:
        """Check if identifier is locked out"""
        with self._lock:
            now = self.clock()
            self._prune(identifier, now)

            if len(self.attempts[identifier]) >= self.max_attempts:
                unlock_time = self.attempts[identifier][0] + timedelta(minutes=self.lockout_minutes)
                minutes_left = max(1, math.ceil((unlock_time - now).total_seconds() / 60))
                return True, f"Too many failed attempts. Try again in {minutes_left} minutes."

            return False, None

    def reset_attempts(self, identifier: str):
        with self._lock:
            self.attempts.pop(identifier, None)


class InputValidator:
    """Validate and sanitize user inputs. Each check returns an error message or None."""

    @staticmethod
    def validate_username(username: str) -> Optional[str]:
        if not username or len(username.strip()) < 3:
            return "Username must be at least 3 characters."
        if not re.fullmatch(r"[A-Za-z0-9_.-]+", username.strip()):
            return "Username may only contain letters, digits, '.', '-' and '_'."
        return None

    @staticmethod
    def validate_password(password: str) -> Optional[str]:
        if not password or len(password) < 6:
            return "Password must be at least 6 characters."
        return None

    @staticmethod
    def validate_pin(pin: str) -> Optional[str]:
        """Validate PIN format"""
        if not pin:
            return "PIN is required"

        pin = pin.strip()

        if not pin.isdigit() or len(pin) != 4:
            return "PIN must be 4 digits."

        return None

    @staticmethod
    def validate_name(name: str) -> Optional[str]:
        if not name or len(name.strip()) < 2:
            return "Name must be at least 2 characters."
        return None

    @staticmethod
    def validate_email(email: str) -> Optional[str]:
        if not email or not EMAIL_PATTERN.match(email.strip()):
            return "Please enter a valid email address."
        return None

    @staticmethod
    def validate_phone(phone: str) -> Optional[str]:
        digits = re.sub(r"[\s()+-]", "", phone or "")
        if not digits.isdigit() or not 7 <= len(digits) <= 15:
            return "Please enter a valid phone number."
        return None

    @staticmethod
    def validate_amount(amount) -> Optional[str]:
        """Validate transaction amount"""
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return "Please enter a valid amount."
        if not math.isfinite(amount) or amount <= 0:
            return "Amount must be positive."
        return None

    @staticmethod
    def sanitize_text(text: str) -> str:
        """Sanitize text input to prevent XSS"""
        if not text:
            return ""
        text = re.sub(r'[<>"\']', '', text)
        return text.strip()
