import random
import re
import string
import unicodedata

# æ/ø/å не раскладываются через NFKD, переводим вручную
NORDIC_LETTERS = str.maketrans({"æ": "ae", "ø": "o", "å": "a"})


class CodeGenerator:
    """Builds human-shareable affiliate codes like `KARI2026` or `KARI2026X7`."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def _clean_name(self, owner_name: str) -> str:
        folded = unicodedata.normalize("NFKD", owner_name.lower().translate(NORDIC_LETTERS))
        cleaned = re.sub(r"[^a-z0-9]", "", folded)[:10]
        return cleaned or "stylist"

    def _random_suffix(self, size: int) -> str:
        return ''.join(self.rng.choices(string.ascii_uppercase + string.digits, k=size))

    def candidates(self, owner_name: str, year: int, max_attempts: int = 5) -> list[str]:
        """The plain `NAME+YEAR` code first, then suffixed fallbacks."""
        base = f"{self._clean_name(owner_name)}{year}".upper()
        return [base] + [base + self._random_suffix(2) for _ in range(max_attempts)]

    @staticmethod
    def pick(candidates: list[str], taken: set[str]) -> str:
        for code in candidates:
            if code not in taken:
                return code
        raise ValueError("Could not generate a unique affiliate code")

    def generate_code(self, owner_name: str, year: int, taken: set[str], max_attempts: int = 5) -> str:
        return self.pick(self.candidates(owner_name, year, max_attempts), taken)
