"""
Fixed four-level content hierarchy plus the Question leaf.

Each level knows its model, the column that references its parent and the
level directly below it. Services walk the tree through this table instead of
hard-coding per-kind branches.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Type
import enum

from medquiz.models.orm import Base, Lecture, Module, Question, Subject, Year


class Kind(str, enum.Enum):
    YEAR = "year"
    MODULE = "module"
    SUBJECT = "subject"
    LECTURE = "lecture"
    QUESTION = "question"


class Collection(str, enum.Enum):
    """Plural names used in admin URLs."""
    years = "years"
    modules = "modules"
    subjects = "subjects"
    lectures = "lectures"
    questions = "questions"

    @property
    def kind(self) -> Kind:
        return Kind(self.value[:-1])


@dataclass(frozen=True)
class Level:
    kind: Kind
    model: Type[Base]
    parent_kind: Optional[Kind] = None
    parent_field: Optional[str] = None
    child_kind: Optional[Kind] = None
    parent_nullable: bool = False

    @property
    def parent_column(self):
        return getattr(self.model, self.parent_field) if self.parent_field else None


LEVELS: Dict[Kind, Level] = {
    Kind.YEAR: Level(Kind.YEAR, Year, child_kind=Kind.MODULE),
    Kind.MODULE: Level(Kind.MODULE, Module, Kind.YEAR, "year_id", Kind.SUBJECT),
    Kind.SUBJECT: Level(Kind.SUBJECT, Subject, Kind.MODULE, "module_id", Kind.LECTURE),
    Kind.LECTURE: Level(Kind.LECTURE, Lecture, Kind.SUBJECT, "subject_id", Kind.QUESTION, parent_nullable=True),
    Kind.QUESTION: Level(Kind.QUESTION, Question, Kind.LECTURE, "lecture_id"),
}


def level_of(kind: Kind) -> Level:
    return LEVELS[Kind(kind)]


def descendants_of(kind: Kind) -> List[Level]:
    """Levels strictly below ``kind``, top-down."""
    levels = []
    child = level_of(kind).child_kind
    while child is not None:
        levels.append(LEVELS[child])
        child = LEVELS[child].child_kind
    return levels
