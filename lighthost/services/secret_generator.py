import hashlib
import hmac
import secrets
import string
from typing import Sequence
from urllib.parse import quote

from lighthost.services.exceptions import EntropySourceUnavailableError

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()-_=+[]{}:,.?"

DEFAULT_CHAR_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)
URL_SAFE_CHAR_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, "-_")


class SecretGenerator:
    """
    일회용 자격 증명(접근 비밀번호, 패널 토큰)을 생성합니다.

    OS의 보안 난수 소스(secrets.SystemRandom)만 사용하며, 소스를 읽을 수 없으면
    더 약한 난수로 대체하지 않고 EntropySourceUnavailableError를 발생시킵니다.
    """

    def __init__(self, rng=None):
        self._rng = rng or secrets.SystemRandom()

    def generate_secret(self, length: int = 16, char_classes: Sequence[str] = DEFAULT_CHAR_CLASSES) -> str:
        """
        각 문자 클래스를 최소 한 번 포함하는 비밀 문자열을 생성합니다.

        클래스마다 한 글자를 먼저 뽑고, 나머지는 전체 합집합 알파벳에서 뽑은 뒤
        위치를 섞습니다. 16자 / 4클래스 기본 설정에서 약 100비트의 엔트로피를 가집니다.

        Args:
            length: 생성할 문자열 길이.
            char_classes: 반드시 포함되어야 하는 문자 클래스 목록.

        Returns:
            생성된 비밀 문자열.

        Raises:
            ValueError: 클래스가 비어 있거나 길이가 클래스 수보다 짧을 때.
            EntropySourceUnavailableError: 보안 난수 소스를 읽을 수 없을 때.
        """
        classes = list(char_classes)
        if not classes or any(not c for c in classes):
            raise ValueError("At least one non-empty character class is required.")
        if length < len(classes):
            raise ValueError(f"Length {length} cannot cover {len(classes)} required character classes.")

        alphabet = "".join(sorted(set("".join(classes))))
        try:
            chars = [self._rng.choice(cls) for cls in classes]
            chars += [self._rng.choice(alphabet) for _ in range(length - len(classes))]
            self._rng.shuffle(chars)
        except (NotImplementedError, OSError) as e:
            raise EntropySourceUnavailableError(f"Secure random source is unavailable: {e}") from e
        return "".join(chars)

    def generate_panel_token(self, length: int = 32) -> str:
        """URL에 그대로 쓸 수 있는 패널 토큰을 생성합니다."""
        return self.generate_secret(length, URL_SAFE_CHAR_CLASSES)


def build_panel_url(base_url: str, resource_id: str) -> str:
    return f"{base_url.rstrip('/')}/server/{resource_id}"


def panel_username(resource_id: str) -> str:
    return f"user_{resource_id.replace('-', '')[:8]}"


def panel_login_url(base_url: str, username: str) -> str:
    return f"{base_url.rstrip('/')}/auth/login?username={quote(username)}"


def hash_secret(secret: str) -> str:
    """비밀 값의 sha256 해시를 반환합니다. 평문 대신 이 값만 저장합니다."""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()


def verify_secret(secret: str, secret_hash: str) -> bool:
    if not secret_hash:
        return False
    return hmac.compare_digest(hash_secret(secret), secret_hash)
