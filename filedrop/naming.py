import secrets
from importlib import resources

WORDLIST_PACKAGE = "filedrop.wordlists"


def load_words(filename: str) -> tuple[str, ...]:
    text = resources.files(WORDLIST_PACKAGE).joinpath(filename).read_text(encoding="utf-8")
    return tuple(line.strip().capitalize() for line in text.splitlines() if line.strip())


class IdentifierGenerator:
    def __init__(self, adjectives: tuple[str, ...], animals: tuple[str, ...]):
        if not adjectives or not animals:
            raise ValueError("identifier word lists must not be empty")
        self.adjectives = tuple(adjectives)
        self.animals = tuple(animals)

    @classmethod
    def from_wordlists(cls) -> "IdentifierGenerator":
        return cls(load_words("adjectives.txt"), load_words("animals.txt"))

    @property
    def combinations(self) -> int:
        return len(self.adjectives) ** 2 * len(self.animals)

    def generate(self) -> str:
        first = secrets.choice(self.adjectives)
        second = secrets.choice(self.adjectives)
        return f"{first}{second}{secrets.choice(self.animals)}"
