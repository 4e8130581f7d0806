from fastapi import APIRouter, Depends, Response
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr
from typing import Any, Dict, List, Optional, Type
from medquiz.core.auth import require_roles
from medquiz.core.database import Database, get_database
from medquiz.models.hierarchy import Collection, Kind, level_of
from medquiz.services.content import ContentStore
from medquiz.services.tree import TreeMaterializer

def no_store(response: Response):
    response.headers["Cache-Control"] = "no-store"

router = APIRouter(dependencies=[Depends(require_roles("admin")), Depends(no_store)])

ExternalId = constr(strip_whitespace=True, min_length=1, max_length=255)

class YearCreate(BaseModel):
    external_id: ExternalId
    name: str
    icon: Optional[str] = None

class ModuleCreate(BaseModel):
    external_id: ExternalId
    name: str
    year_id: ExternalId

class SubjectCreate(BaseModel):
    external_id: ExternalId
    name: str
    module_id: ExternalId

class LectureCreate(BaseModel):
    external_id: ExternalId
    name: str
    subject_id: Optional[str] = None
    order_index: int = 0

class QuestionIn(BaseModel):
    external_id: ExternalId
    text: str
    # shape and answer range are checked by the validation engine, not here
    options: List[Any] = Field(default_factory=list)
    correct_answer_index: Any = None
    explanation: Optional[str] = None
    difficulty_level: int = 1
    question_order: int = 0

class QuestionCreate(QuestionIn):
    lecture_id: ExternalId

class YearUpdate(BaseModel):
    external_id: Optional[ExternalId] = None
    name: Optional[str] = None
    icon: Optional[str] = None

class ModuleUpdate(BaseModel):
    external_id: Optional[ExternalId] = None
    name: Optional[str] = None
    year_id: Optional[ExternalId] = None

class SubjectUpdate(BaseModel):
    external_id: Optional[ExternalId] = None
    name: Optional[str] = None
    module_id: Optional[ExternalId] = None

class LectureUpdate(BaseModel):
    external_id: Optional[ExternalId] = None
    name: Optional[str] = None
    subject_id: Optional[str] = None
    order_index: Optional[int] = None

class QuestionUpdate(BaseModel):
    external_id: Optional[ExternalId] = None
    lecture_id: Optional[ExternalId] = None
    text: Optional[str] = None
    options: Optional[List[Any]] = None
    correct_answer_index: Any = None
    explanation: Optional[str] = None
    difficulty_level: Optional[int] = None
    question_order: Optional[int] = None

class RenameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    new_external_id: ExternalId = Field(alias="newExternalId")

CREATE_MODELS: Dict[Kind, Type[BaseModel]] = {
    Kind.YEAR: YearCreate, Kind.MODULE: ModuleCreate, Kind.SUBJECT: SubjectCreate,
    Kind.LECTURE: LectureCreate, Kind.QUESTION: QuestionCreate,
}
UPDATE_MODELS: Dict[Kind, Type[BaseModel]] = {
    Kind.YEAR: YearUpdate, Kind.MODULE: ModuleUpdate, Kind.SUBJECT: SubjectUpdate,
    Kind.LECTURE: LectureUpdate, Kind.QUESTION: QuestionUpdate,
}

def get_store(db: Database = Depends(get_database)) -> ContentStore:
    return ContentStore(db)

def _parse(model: Type[BaseModel], body: Dict[str, Any]) -> BaseModel:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

async def _serialize(store: ContentStore, kind: Kind, records: List[Any]) -> List[Dict[str, Any]]:
    rows = [r.to_dict() for r in records]
    if kind is Kind.LECTURE:
        counts = await store.question_counts([r["external_id"] for r in rows])
        for row in rows:
            row["questions_count"] = counts.get(row["external_id"], 0)
    return rows

@router.get("/years")
async def admin_tree(db: Database = Depends(get_database)):
    """Full hierarchy including questions and their answer indexes."""
    result = await TreeMaterializer(db).load_tree(include_questions=True)
    return result.years

@router.get("/{collection}")
async def list_collection(
    collection: Collection,
    year_id: Optional[str] = None,
    module_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    lecture_id: Optional[str] = None,
    unassigned: bool = False,
    store: ContentStore = Depends(get_store),
):
    kind = collection.kind
    filters = {"year_id": year_id, "module_id": module_id, "subject_id": subject_id, "lecture_id": lecture_id}
    parent_field = level_of(kind).parent_field
    parent = filters.get(parent_field) if parent_field else None
    records = await store.list(kind, parent=parent, unassigned=unassigned)
    return await _serialize(store, kind, records)

@router.get("/{collection}/{identifier}")
async def get_record(collection: Collection, identifier: str, store: ContentStore = Depends(get_store)):
    record = await store.get(collection.kind, identifier)
    return (await _serialize(store, collection.kind, [record]))[0]

@router.post("/{collection}", status_code=201)
async def create_record(collection: Collection, body: Dict[str, Any], store: ContentStore = Depends(get_store)):
    payload = _parse(CREATE_MODELS[collection.kind], body)
    record = await store.create(collection.kind, payload.model_dump())
    return record.to_dict()

@router.put("/{collection}/{identifier}")
async def update_record(collection: Collection, identifier: str, body: Dict[str, Any], store: ContentStore = Depends(get_store)):
    payload = _parse(UPDATE_MODELS[collection.kind], body)
    record = await store.update(collection.kind, identifier, payload.model_dump(exclude_unset=True))
    return record.to_dict()

@router.post("/{collection}/{identifier}/rename")
async def rename_record(collection: Collection, identifier: str, payload: RenameRequest, store: ContentStore = Depends(get_store)):
    summary = await store.rename(collection.kind, identifier, payload.new_external_id)
    return summary.to_dict()

@router.delete("/{collection}/{identifier}")
async def delete_record(collection: Collection, identifier: str, store: ContentStore = Depends(get_store)):
    summary = await store.delete(collection.kind, identifier)
    return summary.to_dict()

@router.post("/lectures/{identifier}/questions", status_code=201)
async def add_question(identifier: str, payload: QuestionIn, store: ContentStore = Depends(get_store)):
    record = await store.add_question(identifier, payload.model_dump())
    return record.to_dict()
