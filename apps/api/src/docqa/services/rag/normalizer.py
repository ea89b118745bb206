from __future__ import annotations

import re

# C0 controls minus \t \n \r, DEL and the C1 block
_CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_REPLACEMENT_CHARACTER = "\ufffd"


def normalize(raw: str) -> str:
    if not raw:
        return ""

    cleaned = _CONTROL_CHARACTERS.sub("", raw)
    cleaned = cleaned.replace(_REPLACEMENT_CHARACTER, " ")
    return cleaned.strip()
