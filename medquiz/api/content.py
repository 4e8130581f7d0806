from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from medquiz.core.database import Database, get_database
from medquiz.core.errors import BatchLimitError, NotFoundError
from medquiz.services.tree import TreeMaterializer

router = APIRouter()

class LectureBatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    lecture_ids: List[str] = Field(default_factory=list, alias="lectureIds")

def get_materializer(request: Request, db: Database = Depends(get_database)) -> TreeMaterializer:
    settings = request.app.state.settings
    return TreeMaterializer(db, flatten_options=settings.ENABLE_OPTION_TRANSFORM, batch_limit=settings.LECTURE_BATCH_LIMIT)

@router.get("/years")
async def list_years(
    if_none_match: Optional[str] = Header(default=None),
    tree: TreeMaterializer = Depends(get_materializer),
):
    result = await tree.load_tree()
    headers = {"ETag": result.etag, "Cache-Control": "no-cache"}
    if result.matches(if_none_match):
        return Response(status_code=304, headers=headers)
    if result.is_empty:
        raise NotFoundError("year", "*", field=None)
    return JSONResponse(content=result.years, headers=headers)

# the batch routes must be declared before /lectures/{lecture_id}
@router.get("/lectures/batch")
async def get_lectures_batch(ids: Optional[str] = Query(default=None), tree: TreeMaterializer = Depends(get_materializer)):
    if not ids:
        raise BatchLimitError("ids query parameter required", count=0, limit=tree.batch_limit)
    return await tree.load_lectures(ids.split(","))

@router.post("/lectures/batch")
async def post_lectures_batch(payload: LectureBatchRequest, tree: TreeMaterializer = Depends(get_materializer)):
    return await tree.load_lectures(payload.lecture_ids)

@router.get("/lectures/{lecture_id}")
async def get_lecture(lecture_id: str, tree: TreeMaterializer = Depends(get_materializer)):
    return await tree.load_lecture(lecture_id)
