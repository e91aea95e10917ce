"""Common German and English first names used by the name detector.

The list is intentionally short. Uncommon names slip through and words that
coincide with names (``mark``, ``paul``) get masked.
"""

GERMAN_FIRST_NAMES: frozenset[str] = frozenset(
    {
        "alexander", "andreas", "christian", "daniel", "david", "florian",
        "jan", "jonas", "julian", "lukas", "marcel", "markus", "martin",
        "matthias", "michael", "nico", "patrick", "paul", "sebastian",
        "stefan", "thomas", "tim", "tobias", "anna", "christina", "daniela",
        "elena", "emma", "hannah", "julia", "katharina", "laura", "lea",
        "lena", "lisa", "marie", "melanie", "nadine", "nicole", "sabrina",
        "sandra", "sarah", "stefanie", "vanessa",
    }
)

ENGLISH_FIRST_NAMES: frozenset[str] = frozenset(
    {
        "james", "john", "robert", "michael", "william", "david", "richard",
        "joseph", "thomas", "christopher", "charles", "daniel", "matthew",
        "anthony", "mark", "donald", "steven", "paul", "andrew", "joshua",
        "mary", "patricia", "jennifer", "linda", "elizabeth", "barbara",
        "susan", "jessica", "sarah", "karen", "nancy", "lisa", "betty",
        "helen", "sandra", "donna", "carol", "ruth", "sharon", "michelle",
    }
)

COMMON_FIRST_NAMES: frozenset[str] = GERMAN_FIRST_NAMES | ENGLISH_FIRST_NAMES
