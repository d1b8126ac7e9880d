import logging
import secrets
import string

from .errors import AllocationExhausted
from .store import LinkStore

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_letters + string.digits
MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 16


def generate_code(length: int, alphabet: str = ALPHABET) -> str:
    """Случайный код из криптостойкого источника."""
    return "".join(secrets.choice(alphabet) for _ in range(length))


class CodeAllocator:
    """
    Выдаёт коды, которых ещё нет в хранилище.

    На каждой длине делается не больше `retries` попыток, после чего длина
    увеличивается на символ. Так время выдачи ограничено даже при почти
    заполненном пространстве ключей. Если не повезло и на максимальной
    длине, выбрасывается AllocationExhausted.
    """

    def __init__(
        self,
        store: LinkStore,
        length: int = MIN_CODE_LENGTH,
        max_length: int = MAX_CODE_LENGTH,
        retries: int = 5,
        alphabet: str = ALPHABET,
    ):
        if not MIN_CODE_LENGTH <= length <= max_length <= MAX_CODE_LENGTH:
            raise ValueError(
                f"Длина кода должна быть в пределах {MIN_CODE_LENGTH}..{MAX_CODE_LENGTH}"
            )
        if retries < 1:
            raise ValueError("retries должен быть положительным")
        self.store = store
        self.length = length
        self.max_length = max_length
        self.retries = retries
        self.alphabet = alphabet

    def allocate(self) -> str:
        for length in range(self.length, self.max_length + 1):
            for _ in range(self.retries):
                candidate = generate_code(length, self.alphabet)
                if not self.store.exists(candidate):
                    return candidate
            if length < self.max_length:
                logger.warning(
                    "%d collisions at code length %d, widening to %d",
                    self.retries, length, length + 1,
                )

        used = self.store.count_with_length(self.max_length)
        keyspace = len(self.alphabet) ** self.max_length
        logger.error(
            "Code allocation exhausted: %d of %d codes of length %d in use",
            used, keyspace, self.max_length,
        )
        raise AllocationExhausted(
            f"Не удалось выделить код длиной до {self.max_length} символов "
            f"(занято {used} из {keyspace})"
        )
