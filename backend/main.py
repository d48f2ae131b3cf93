import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import anthropic
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

import config
import database
from database import TaskStore
from dialogue import DialogueMachine
from dispatcher import ActionDispatcher, patch_changes
from errors import StoreUnavailable, TargetNotFound
from models import ChatRequest, Message, Task, TaskCreate, TaskUpdate
from oracle import ClaudeOracle
from session import StreamEvent, format_sse, reply_only, stream_turn
from tracker import decode_tracker, tracker_to_dict

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

client = anthropic.AsyncAnthropic(
    api_key=config.ANTHROPIC_API_KEY,
    timeout=config.ORACLE_TIMEOUT_SECONDS,
)
oracle = ClaudeOracle(client, config.ANTHROPIC_MODEL, config.ORACLE_MAX_TOKENS)
store = TaskStore()


@app.get("/tasks")
def get_tasks(query: Optional[str] = None) -> list[dict]:
    """List tasks newest first, or rank them against a free-text query."""
    try:
        tasks = store.list()
        if not query:
            return [task.model_dump(mode="json") for task in tasks]
        by_id = {task.id: task for task in tasks}
        hits = store.search(query)
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [
        dict(by_id[hit.id].model_dump(mode="json"), score=hit.score)
        for hit in hits
        if hit.id in by_id
    ]


@app.post("/tasks")
def create_task(task_data: TaskCreate) -> Task:
    try:
        return store.create(
            name=task_data.name,
            description=task_data.desc,
            due=task_data.due(),
            status=task_data.status,
        )
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.patch("/tasks/{task_id}")
def update_task(task_id: str, task_data: TaskUpdate) -> Task:
    try:
        return store.update(task_id, **patch_changes(task_data))
    except TargetNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.delete("/tasks/{task_id}")
def delete_task(task_id: str) -> dict:
    try:
        store.delete(task_id)
    except TargetNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "deleted"}


@app.post("/conversations")
def create_conversation() -> dict:
    return {"id": database.new_conversation()}


@app.get("/conversations/{conversation_id}")
def get_conversation_endpoint(conversation_id: int) -> dict:
    """Get saved conversation history and the tracker to resume with."""
    conversation = database.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return dict(conversation, tracker=tracker_to_dict(conversation["tracker"]))


async def _sse(chat_request: ChatRequest, events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Encode turn events; stored conversations are saved before the final event."""
    replies = []
    async for event in events:
        if event.type == "text":
            replies.append(event.text)
        elif event.type == "done" and chat_request.conversation_id is not None:
            messages = [m.model_dump() for m in chat_request.history]
            messages.append({"role": "user", "content": chat_request.message})
            messages.append({"role": "assistant", "content": "\n".join(replies)})
            try:
                database.save_conversation(chat_request.conversation_id, messages, decode_tracker(event.tracker))
            except sqlite3.Error as e:
                logger.error("Could not save conversation %s: %s", chat_request.conversation_id, e)
        yield format_sse(event)



@app.post("/chat")
async def chat(chat_request: ChatRequest) -> StreamingResponse:
    """Run one slot-filling turn and stream its events."""

    if chat_request.conversation_id is not None:
        conversation = database.get_conversation(chat_request.conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        if not chat_request.history and chat_request.tracker is None:
            chat_request = chat_request.model_copy(update={
                "history": [Message(**m) for m in conversation["messages"]],
                "tracker": conversation["tracker"],
            })

    if not config.api_key_configured():
        events = reply_only("API key not configured", chat_request.tracker)
    else:
        events = stream_turn(
            chat_request,
            DialogueMachine(oracle),
            ActionDispatcher(store),
            timeout=config.ORACLE_TIMEOUT_SECONDS,
        )

    return StreamingResponse(
        _sse(chat_request, events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
