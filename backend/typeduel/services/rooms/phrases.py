import random
import string
from typing import Optional

PHRASES = [
    "The quick brown fox jumps over the lazy dog",
    "Pack my box with five dozen liquor jugs",
    "How vexingly quick daft zebras jump",
    "Bright vixens jump; dozy fowl quack",
    "Sphinx of black quartz, judge my vow",
    "Two driven jocks help fax my big quiz",
    "Five quacking zephyrs jolt my wax bed",
    "The five boxing wizards jump quickly",
    "Jackdaws love my big sphinx of quartz",
    "Mr. Jock, TV quiz PhD., bags few lynx",
]

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 4

_default_rng = random.Random()


def get_rng(rng: Optional[random.Random] = None) -> random.Random:
    return rng if rng is not None else _default_rng


def pick_phrase(rng: Optional[random.Random] = None) -> str:
    return get_rng(rng).choice(PHRASES)


def generate_room_code(rng: Optional[random.Random] = None, length: int = ROOM_CODE_LENGTH) -> str:
    """Generate a short room code such as ``K3ZQ``."""
    return ''.join(get_rng(rng).choices(ROOM_CODE_ALPHABET, k=length))
