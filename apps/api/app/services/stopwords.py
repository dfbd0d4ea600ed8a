"""Exclusion vocabulary for hashtag candidates."""

from collections.abc import Iterable
from typing import Any

from app.services.tag_normalizer import Hashtag

MIN_TAG_LENGTH = 3

STOPWORDS: frozenset[str] = frozenset(
    """
    a about above after again against all almost along already also although always am
    among an and another any anybody anyone anything anywhere are around as at back be
    because been before being below between both but by can cannot could did do does
    doing down during each either else enough even ever every everybody everyone
    everything everywhere except few for from further get gets getting give given gives
    go goes going gone got gotten had has have having he her here hers herself him
    himself his how however i if in inside instead into is it its itself just keep
    keeps kept kind knew know known knows last later least less let like likely long
    made make makes making many may maybe me mean meant means might mine more most
    mostly much must my myself name namely near need needs neither never next no nobody
    non none nor not nothing now nowhere of off often oh on once one only onto or other
    others otherwise ought our ours ourselves out over own part particular particularly
    past per perhaps place please point possible probably put puts quite rather really
    regarding right said same saw say saying says second see seem seemed seeming seems
    seen self selves sent several shall she should since so some somebody someone
    something sometime sometimes somewhere soon still such sure take taken taking tell
    tends than that the their theirs them themselves then there thereafter thereby
    therefore therein thereupon these they thing things think thinks this those though
    thought through throughout thus till to together too took toward towards tried
    tries truly try trying twice under underneath undo unfortunately unless unlike
    unlikely until unto up upon us use used uses using usually value various very via
    view want wants was way we well went were what whatever when whence whenever where
    whereafter whereas whereby wherein whereupon wherever whether which while whither
    who whoever whole whom whose why will willing wish with within without wonder would
    yes yet you your yours yourself yourselves
    additionally finally
    """.split()
)


def should_exclude(word: str) -> bool:
    """True when ``word`` must never become a tag.

    Short (< 3 chars), purely numeric and stopword candidates are rejected.
    A leading ``#`` is ignored.
    """
    core = word.lstrip("#").strip()
    if len(core) < MIN_TAG_LENGTH:
        return True
    if core.isdigit():
        return True
    return core.lower() in STOPWORDS


def filter_excluded(values: Iterable[Any]) -> list[Hashtag]:
    out: list[Hashtag] = []
    for value in values:
        tag = Hashtag.parse(value)
        if tag is not None and not should_exclude(tag.name):
            out.append(tag)
    return out
