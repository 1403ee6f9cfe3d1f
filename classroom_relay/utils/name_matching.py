import re

# Common nickname / spelling variants, all lowercase
NAME_VARIATIONS = {
    "mohammed": "muhammad",
    "mohammad": "muhammad",
    "muhammed": "muhammad",
    "mohamed": "muhammad",
    "mohamad": "muhammad",
    "mike": "michael",
    "mick": "michael",
    "bob": "robert",
    "rob": "robert",
    "bill": "william",
    "will": "william",
    "jim": "james",
    "jimmy": "james",
    "joe": "joseph",
    "joey": "joseph",
    "tom": "thomas",
    "tommy": "thomas",
    "nick": "nicholas",
    "alex": "alexander",
    "sam": "samuel",
    "sammy": "samuel",
    "dave": "david",
    "dan": "daniel",
    "danny": "daniel",
    "chris": "christopher",
    "matt": "matthew",
    "steve": "steven",
    "stephen": "steven",
    "jon": "jonathan",
    "tony": "anthony",
    "andy": "andrew",
    "drew": "andrew",
    "ben": "benjamin",
    "benny": "benjamin",
    "ed": "edward",
    "eddie": "edward",
    "ted": "theodore",
    "rick": "richard",
    "dick": "richard",
    "rich": "richard",
    "harry": "henry",
    "hank": "henry",
    "jack": "john",
    "johnny": "john",
    "jen": "jennifer",
    "jenny": "jennifer",
    "kate": "katherine",
    "katie": "katherine",
    "kathy": "katherine",
    "liz": "elizabeth",
    "beth": "elizabeth",
    "betty": "elizabeth",
    "meg": "margaret",
    "maggie": "margaret",
    "peggy": "margaret",
    "sue": "susan",
    "suzy": "susan",
    "susie": "susan",
    "pam": "pamela",
    "pat": "patricia",
    "patty": "patricia",
    "trish": "patricia",
    "deb": "deborah",
    "debbie": "deborah",
    "becky": "rebecca",
    "becca": "rebecca",
    "mandy": "amanda",
    "cindy": "cynthia",
    "vicky": "victoria",
    "tori": "victoria",
}

# Device / generic words that Zoom clients append to display names
DEVICE_WORDS = {
    "iphone", "ipad", "android", "samsung", "pixel", "galaxy",
    "phone", "tablet", "device", "mobile", "macbook", "laptop",
}

_PARENS = re.compile(r"\s*\([^)]*\)")
_BRACKETS = re.compile(r"\s*\[[^\]]*\]")
_HASH_NUMBER = re.compile(r"\s*#\d+")
_TRAILING_NUMBER = re.compile(r"\s*[(\[]?\d+[)\]]?\s*$")
_POSSESSIVE = re.compile(r"['’]s\b")
_NON_LETTERS = re.compile(r"[^a-z\s]")
_SPACES = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Lowercase, strip device suffixes, counters and punctuation, then fold nicknames."""
    text = name.lower()
    text = _PARENS.sub("", text)
    text = _BRACKETS.sub("", text)
    text = _HASH_NUMBER.sub("", text)
    text = _TRAILING_NUMBER.sub("", text)
    text = _POSSESSIVE.sub("", text)
    text = _NON_LETTERS.sub("", text)
    words = [w for w in _SPACES.sub(" ", text).strip().split(" ") if w and w not in DEVICE_WORDS]
    return " ".join(NAME_VARIATIONS.get(w, w) for w in words)


def _parts_match(a: str, b: str) -> bool:
    if a == b:
        return True
    return len(a) >= 4 and len(b) >= 4 and (a.startswith(b) or b.startswith(a))


def names_match(name1: str, name2: str) -> bool:
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)

    if not n1 or not n2:
        return False
    if n1 == n2 or n1 in n2 or n2 in n1:
        return True

    parts1 = [p for p in n1.split(" ") if len(p) > 1]
    parts2 = [p for p in n2.split(" ") if len(p) > 1]
    if not parts1 or not parts2:
        return False

    # same parts in a different order ("Rahman Mohima" / "Mohima Rahman")
    if sorted(parts1) == sorted(parts2):
        return True

    if len(parts1) >= 2 and len(parts2) >= 2:
        first1, last1 = parts1[0], parts1[-1]
        first2, last2 = parts2[0], parts2[-1]

        if _parts_match(first1, first2):
            if _parts_match(last1, last2):
                return True
            if len(parts1) > 2 or len(parts2) > 2:
                return any(_parts_match(p, last1) for p in parts2) or any(_parts_match(p, last2) for p in parts1)
            return False

        if _parts_match(first1, last2) and _parts_match(last1, first2):
            return True

        if len(parts1) >= 3 or len(parts2) >= 3:
            return any(_parts_match(first1, p) for p in parts2) and any(_parts_match(last1, p) for p in parts2)
        return False

    # one side is a single name ("Sapna"): match it against any part of the other
    single = parts1[0] if len(parts1) == 1 else parts2[0]
    multi = parts2 if len(parts1) == 1 else parts1
    for p in multi:
        if single == p:
            return True
        if len(single) >= 3 and len(p) >= 3 and (single.startswith(p) or p.startswith(single)):
            return True
    return False
