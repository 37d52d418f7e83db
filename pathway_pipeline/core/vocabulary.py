"""
pathway_pipeline/core/vocabulary.py

Hand-built word lists and patterns shared by the classifier, resolver and
verifier. Lookups are case-insensitive; entries are lower-case.
"""
from __future__ import annotations
import re
from typing import Dict, List, Optional

AFFIRMATIVE_PAT = re.compile(r"^(yes|yeah|yep|yup|sure|ok|okay)[.!]*$", re.I)
ACKNOWLEDGMENT_PAT = re.compile(r"^(thanks|thank you|got it|cool)[.!]*$", re.I)
GREETING_PAT = re.compile(r"^(hi|hello|hey|aloha)[.!]*$", re.I)
TOPIC_PIVOT_PAT = re.compile(
    r"^(what about|how about|tell me about|instead|actually|now|switch to|change to|no|wait)\b", re.I
)

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from about what which where how
    is are was were been be have has had do does did will would could should may might
    must can want need like find show tell give list just see job jobs career careers
    me my more that this these those some any all i im am you your there their them
    interested interest looking get study studying learn learning program programs
    course courses school schools college colleges options option available also really
    please know good best
    """.split()
)

# domain terms outrank frequency-based picks
DOMAIN_KEYWORDS = frozenset(
    """
    culinary cooking food chef engineering engineer technical computer software programming
    coding technology tech health medical nursing healthcare business management finance
    accounting art arts design creative graphic music audio performance science biology
    chemistry physics math mathematics statistics cyber security cybersecurity network
    automotive mechanic mechanical construction building architecture hospitality tourism
    hotel travel agriculture farming environmental
    """.split()
)

# words that carry no program topic for school/region scoped queries
GENERIC_SCOPE_WORDS = frozenset(
    "all available programs program show offered offer offers high school schools courses list options".split()
)

TOPIC_PATTERNS: List[re.Pattern] = [
    re.compile(r"\b(nursing|nurse|rn|bsn|healthcare|medical|clinical)\b", re.I),
    re.compile(r"\b(computer science|cs|programming|software|it|tech|data science)\b", re.I),
    re.compile(r"\b(business|management|marketing|finance|accounting)\b", re.I),
    re.compile(r"\b(engineering|engineer)\b", re.I),
    re.compile(r"\b(education|teaching|teacher)\b", re.I),
    re.compile(r"\b(tourism|hospitality|hotel|culinary)\b", re.I),
    re.compile(r"\b(marine biology|ocean|environmental|conservation)\b", re.I),
    re.compile(r"\b(hawaiian studies|hawaiian culture|indigenous)\b", re.I),
    re.compile(r"\b(liberal arts|humanities|social science)\b", re.I),
]

# place/school/campus name -> region; more specific names first
REGION_ALIASES: Dict[str, str] = {
    "hawaii community college": "Hawaii",
    "hawaii cc": "Hawaii",
    "big island": "Hawaii",
    "hilo": "Hawaii",
    "kona": "Hawaii",
    "waiakea": "Hawaii",
    "honokaa": "Hawaii",
    "keaau": "Hawaii",
    "kealakehe": "Hawaii",
    "kohala": "Hawaii",
    "konawaena": "Hawaii",
    "pahoa": "Hawaii",
    "maui": "Maui",
    "kahului": "Maui",
    "wailuku": "Maui",
    "baldwin": "Maui",
    "lahainaluna": "Maui",
    "king kekaulike": "Maui",
    "molokai": "Maui",
    "moloka'i": "Maui",
    "lanai": "Maui",
    "lana'i": "Maui",
    "kauai": "Kauai",
    "kaua'i": "Kauai",
    "lihue": "Kauai",
    "kapaa": "Kauai",
    "waimea": "Kauai",
    "oahu": "Oahu",
    "o'ahu": "Oahu",
    "honolulu": "Oahu",
    "manoa": "Oahu",
    "kapiolani": "Oahu",
    "leeward": "Oahu",
    "windward": "Oahu",
    "west oahu": "Oahu",
    "pearl city": "Oahu",
    "kaneohe": "Oahu",
    "waipahu": "Oahu",
    "aiea": "Oahu",
    "mililani": "Oahu",
    "campbell": "Oahu",
    "farrington": "Oahu",
    "kahuku": "Oahu",
    "kailua": "Oahu",
    "kaimuki": "Oahu",
    "kaiser": "Oahu",
    "kalaheo": "Oahu",
    "kalani": "Oahu",
    "kapolei": "Oahu",
    "leilehua": "Oahu",
    "mckinley": "Oahu",
    "moanalua": "Oahu",
    "nanakuli": "Oahu",
    "radford": "Oahu",
    "roosevelt": "Oahu",
    "waialua": "Oahu",
    "waianae": "Oahu",
    "hawaii": "Hawaii",
    "hawai'i": "Hawaii",
}

REGIONS = frozenset(REGION_ALIASES.values())


def detect_region(text: Optional[str]) -> Optional[str]:
    """Canonical region named (directly or through a place alias) in text, else None."""
    low = (text or "").lower()
    if not low:
        return None
    for alias, region in REGION_ALIASES.items():
        if re.search(r"\b" + re.escape(alias) + r"\b", low):
            return region
    return None


def matching_topics(text: str) -> List[int]:
    return [i for i, pat in enumerate(TOPIC_PATTERNS) if pat.search(text or "")]
