"""Discussion forum routes — threads and replies."""

from fastapi import APIRouter, Depends, Query

from gema.api.deps import get_discussion_service
from gema.auth.dependencies import Identity, get_current_identity
from gema.schemas.common import ok
from gema.schemas.discussion import ReplyCreate, ThreadCreate, ThreadUpdate
from gema.services.discussion_service import DiscussionService

router = APIRouter(prefix="/discussion")


# ─── Threads ────────────────────────────────────────────

@router.get("/threads")
async def list_threads(
    limit: int = Query(20),
    offset: int = Query(0),
    svc: DiscussionService = Depends(get_discussion_service),
):
    """Most recently active first."""
    threads = await svc.list_threads(limit=limit, offset=offset)
    return ok("threads retrieved", [t.model_dump(mode="json", exclude_none=True) for t in threads])


@router.post("/threads", status_code=201)
async def create_thread(
    body: ThreadCreate,
    identity: Identity = Depends(get_current_identity),
    svc: DiscussionService = Depends(get_discussion_service),
):
    thread = await svc.create_thread(identity, body)
    return ok("thread created", thread.model_dump(mode="json", exclude_none=True))


@router.get("/threads/{thread_id}")
async def get_thread(
    thread_id: int,
    include_replies: bool = Query(False),
    svc: DiscussionService = Depends(get_discussion_service),
):
    thread = await svc.get_thread(thread_id, include_replies=include_replies)
    return ok("thread retrieved", thread.model_dump(mode="json", exclude_none=True))


@router.put("/threads/{thread_id}")
async def update_thread(
    thread_id: int,
    body: ThreadUpdate,
    identity: Identity = Depends(get_current_identity),
    svc: DiscussionService = Depends(get_discussion_service),
):
    """Rename a thread (author or admin/teacher)."""
    thread = await svc.update_thread(identity, thread_id, body)
    return ok("thread updated", thread.model_dump(mode="json", exclude_none=True))


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: int,
    identity: Identity = Depends(get_current_identity),
    svc: DiscussionService = Depends(get_discussion_service),
):
    await svc.delete_thread(identity, thread_id)
    return ok("thread deleted")


# ─── Replies ────────────────────────────────────────────

@router.get("/replies")
async def list_replies(
    thread_id: int = Query(..., ge=1),
    limit: int = Query(50),
    offset: int = Query(0),
    svc: DiscussionService = Depends(get_discussion_service),
):
    """Oldest first."""
    replies = await svc.list_replies(thread_id, limit=limit, offset=offset)
    return ok("replies retrieved", [r.model_dump(mode="json") for r in replies])


@router.post("/replies", status_code=201)
async def create_reply(
    body: ReplyCreate,
    identity: Identity = Depends(get_current_identity),
    svc: DiscussionService = Depends(get_discussion_service),
):
    """Post a reply. Notifies the thread author and @mentioned users."""
    reply = await svc.create_reply(identity, body)
    return ok("reply created", reply.model_dump(mode="json"))
